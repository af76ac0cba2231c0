"""FlightSurety API Package"""
