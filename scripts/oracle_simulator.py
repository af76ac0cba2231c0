#!/usr/bin/env python3
"""
FlightSurety Oracle Simulator

Registers a pool of oracles with the API, listens to the event stream and,
whenever a status request is opened, has every oracle holding the requested
index report a status code.

Usage:
    python scripts/oracle_simulator.py --oracles 20 --url http://localhost:8000
"""

import argparse
import asyncio
import json
import math
import random
import signal
import sys
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

import aiohttp
import websockets

from src.auth import IDENTITY_KEY_HEADER


def generate_status_code(rng: random.Random) -> int:
    """Random status code in {10, 20, 30, 40, 50}"""
    return math.ceil(rng.randint(1, 50) / 10) * 10


class OracleSimulator:
    """Simulated oracle pool answering request_opened events"""

    def __init__(
        self,
        api_url: str = "http://localhost:8000",
        ws_url: str = "ws://localhost:8000/ws/events",
        oracle_count: int = 20,
        registration_fee: int = 10 ** 18,
        fixed_status: Optional[int] = None,
        seed: Optional[int] = None,
        log_level: str = "INFO",
    ):
        self.api_url = api_url.rstrip("/")
        self.ws_url = ws_url
        self.oracle_count = oracle_count
        self.registration_fee = registration_fee
        self.fixed_status = fixed_status
        self.rng = random.Random(seed)
        self.log_level = log_level

        self.running = True
        self.oracles: Dict[str, List[int]] = {}
        self.api_keys: Dict[str, str] = {}
        self.accepted = 0
        self.rejected = 0

    def _handle_shutdown(self, signum, frame):
        self.log("Received shutdown signal, stopping oracles...")
        self.running = False

    def log(self, message: str, level: str = "INFO"):
        if level == "DEBUG" and self.log_level != "DEBUG":
            return
        timestamp = datetime.utcnow().strftime("%Y-%m-%dT%H:%M:%S.%f")
        print(f"[{timestamp}] [{level}] {message}")

    def responders_for(self, index: int) -> List[str]:
        """Oracles holding the requested index"""
        return [oracle for oracle, indexes in self.oracles.items() if index in indexes]

    def next_status(self) -> int:
        if self.fixed_status is not None:
            return self.fixed_status
        return generate_status_code(self.rng)

    async def register_oracles(self, session: aiohttp.ClientSession):
        """Register the oracle pool and remember each oracle's indexes"""
        for i in range(self.oracle_count):
            oracle = f"oracle-{i:02d}-{uuid.uuid4().hex[:6]}"
            async with session.post(
                f"{self.api_url}/oracles",
                json={"oracle": oracle, "fee": self.registration_fee},
            ) as response:
                if response.status == 201:
                    result = await response.json()
                    self.oracles[oracle] = result["indexes"]
                    self.api_keys[oracle] = result["api_key"]
                    self.log(f"Oracle {oracle} registered with indexes {result['indexes']}", "DEBUG")
                else:
                    self.log(f"Oracle registration failed: HTTP {response.status} {await response.text()}", "ERROR")
        self.log(f"Registered {len(self.oracles)}/{self.oracle_count} oracles")

    async def respond(self, session: aiohttp.ClientSession, event: Dict[str, Any]):
        """Submit one report per oracle holding the event's index"""
        payload = event["payload"]
        airline, _, flight = payload["subject"].partition(":")
        status = self.next_status()

        for oracle in self.responders_for(payload["index"]):
            body = {
                "index": payload["index"],
                "airline": airline,
                "flight": flight,
                "timestamp": payload["timestamp"],
                "status": status,
            }
            async with session.post(
                f"{self.api_url}/oracle-responses",
                json=body,
                headers={IDENTITY_KEY_HEADER: self.api_keys[oracle]},
            ) as response:
                if response.status == 202:
                    self.accepted += 1
                    self.log(f"Oracle {oracle} accepted with status code {status}")
                else:
                    # Late reports after consensus are expected to bounce
                    self.rejected += 1
                    detail = await response.json()
                    self.log(f"Oracle {oracle} rejected: {detail.get('error')}", "DEBUG")

    async def listen(self, session: aiohttp.ClientSession):
        while self.running:
            try:
                async with websockets.connect(self.ws_url) as ws:
                    self.log(f"Listening for status requests on {self.ws_url}")
                    while self.running:
                        try:
                            message = await asyncio.wait_for(ws.recv(), timeout=5.0)
                        except asyncio.TimeoutError:
                            await ws.send("ping")
                            continue
                        event = json.loads(message)
                        if event.get("type") == "request_opened":
                            self.log(
                                f"Request index={event['payload']['index']} "
                                f"subject={event['payload']['subject']} "
                                f"timestamp={event['payload']['timestamp']}"
                            )
                            await self.respond(session, event)
            except (websockets.exceptions.ConnectionClosed, OSError) as e:
                self.log(f"Event stream lost ({e}), reconnecting...", "WARNING")
                await asyncio.sleep(2)

    async def run(self):
        signal.signal(signal.SIGINT, self._handle_shutdown)
        signal.signal(signal.SIGTERM, self._handle_shutdown)
        async with aiohttp.ClientSession() as session:
            await self.register_oracles(session)
            await self.listen(session)
        self.log(f"Stopped: accepted={self.accepted} rejected={self.rejected}")


def main():
    parser = argparse.ArgumentParser(description="FlightSurety oracle simulator")
    parser.add_argument("--url", default="http://localhost:8000", help="API base URL")
    parser.add_argument("--ws-url", default=None, help="Event stream URL (default: derived from --url)")
    parser.add_argument("--oracles", type=int, default=20, help="Number of oracles to register")
    parser.add_argument("--fee", type=int, default=10 ** 18, help="Registration fee in wei")
    parser.add_argument("--status", type=int, default=None, help="Always report this status code")
    parser.add_argument("--seed", type=int, default=None, help="Seed for status code generation")
    parser.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO"])
    args = parser.parse_args()

    ws_url = args.ws_url or args.url.replace("http", "ws", 1).rstrip("/") + "/ws/events"
    simulator = OracleSimulator(
        api_url=args.url,
        ws_url=ws_url,
        oracle_count=args.oracles,
        registration_fee=args.fee,
        fixed_status=args.status,
        seed=args.seed,
        log_level=args.log_level,
    )
    asyncio.run(simulator.run())


if __name__ == "__main__":
    main()
