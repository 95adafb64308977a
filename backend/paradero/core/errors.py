"""Failure taxonomy shared by the acquisition, sync and routing components."""


class ParaderoError(Exception):
    """Base class for all errors raised by the paradero core."""


class CapabilityUnavailable(ParaderoError):
    """The position sensor (or its permission API) is not available at all."""


class PermissionDenied(ParaderoError):
    """The rider refused location access. Terminal until explicitly retried."""


class TransientPositionFailure(ParaderoError):
    """Position unavailable or timed out after the bounded retries ran out."""


class UpstreamFetchFailure(ParaderoError):
    """An upstream HTTP call (stops, arrivals, routing) failed.

    ``status_code`` is the upstream HTTP status when there was a response.
    """

    def __init__(self, message: str = "", status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class NoRouteAvailable(ParaderoError):
    """The routing service answered but had no path between the two points."""
