# src/errors.py
"""
FlightSurety error taxonomy.

Every rejected operation raises one of these synchronously to its caller.
Nothing is retried internally; callers decide whether to try again.
"""

from typing import Any, Optional


class FlightSuretyError(Exception):
    """Base class for all domain failures"""


class Unauthorized(FlightSuretyError):
    """Raised when a non-owner attempts a privileged operation"""
    def __init__(self, caller: str, operation: str):
        self.caller = caller
        self.operation = operation
        super().__init__(f"{caller} is not allowed to {operation}")


class NotOperational(FlightSuretyError):
    """Raised while the service is paused"""
    def __init__(self):
        super().__init__("Service is not operational")


class NotRegistered(FlightSuretyError):
    """Raised when an oracle, airline or flight has no record"""
    def __init__(self, kind: str, identity: Any):
        self.kind = kind
        self.identity = identity
        super().__init__(f"{kind} {identity} is not registered")


class AlreadyRegistered(FlightSuretyError):
    """Raised when registering or admitting an identity that already has a record"""
    def __init__(self, kind: str, identity: Any):
        self.kind = kind
        self.identity = identity
        super().__init__(f"{kind} {identity} is already registered")


class NotFunded(FlightSuretyError):
    """Raised when an airline acts before submitting its funding"""
    def __init__(self, airline: str):
        self.airline = airline
        super().__init__(f"Airline {airline} has not submitted funding")


class IndexMismatch(FlightSuretyError):
    """Raised when an oracle claims an index it does not own"""
    def __init__(self, oracle: str, claimed_index: int):
        self.oracle = oracle
        self.claimed_index = claimed_index
        super().__init__(f"Oracle {oracle} does not own index {claimed_index}")


class RequestClosedOrUnknown(FlightSuretyError):
    """Raised when submitting against a finalized, cancelled, expired or absent request"""
    def __init__(self, key: Any):
        self.key = key
        super().__init__(f"No open status request for {key}")


class DuplicateVote(FlightSuretyError):
    """Raised when an airline votes twice for the same candidate"""
    def __init__(self, voter: str, candidate: str):
        self.voter = voter
        self.candidate = candidate
        super().__init__(f"Airline {voter} already voted for {candidate}")


class DuplicateSubmission(FlightSuretyError):
    """Raised when an oracle reports twice for the same request key"""
    def __init__(self, oracle: str, key: Any):
        self.oracle = oracle
        self.key = key
        super().__init__(f"Oracle {oracle} already responded to {key}")


class InsufficientFee(FlightSuretyError):
    """Raised when a payment is below the required minimum"""
    def __init__(self, paid: int, required: int):
        self.paid = paid
        self.required = required
        super().__init__(f"Payment of {paid} wei is below the required {required} wei")


class OutOfRange(FlightSuretyError):
    """Raised when an index, status value or amount is outside its declared bounds"""
    def __init__(self, field_name: str, value: Any, detail: Optional[str] = None):
        self.field_name = field_name
        self.value = value
        message = f"{field_name}={value} is out of range"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
