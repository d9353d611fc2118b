"""
Error taxonomy for the routing simulator.

Structural problems (bad configuration, scheduler misuse) are raised and abort
the run. Protocol-level failures are local: RouteUnreachable instances are
handed to the application that owned the dropped packet instead of being
raised through the event loop.
"""

from typing import Optional


class SimulationError(Exception):
    """Base class for all simulator errors."""


class ConfigurationError(SimulationError):
    """
    Invalid parameters detected while building a simulation.

    parameter names the offending setting so the caller can report it.
    """

    def __init__(self, parameter: str, message: str) -> None:
        super().__init__(f"{parameter}: {message}")
        self.parameter = parameter
        self.message = message


class InvalidSchedule(SimulationError):
    """An event was scheduled in the past or could not be dispatched."""


class RouteUnreachable(SimulationError):
    """node dropped a packet for destination: discovery gave up or a relay had no Valid route."""

    def __init__(self, node: int, destination: int, reason: Optional[str] = None) -> None:
        detail = f" ({reason})" if reason else ""
        super().__init__(f"node {node} has no route to {destination}{detail}")
        self.node = node
        self.destination = destination
        self.reason = reason
