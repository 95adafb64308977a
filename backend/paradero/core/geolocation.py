"""Permission-gated position acquisition over an unreliable device sensor.

The state is a tagged variant: only ``Granted`` can hold a watch session,
so "denied with an active watch" cannot be expressed. Every transition that
leaves ``Granted`` (or restarts acquisition) cancels the watch first, so at
most one watch is ever active.
"""

import asyncio
import enum
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Hashable, Protocol, Union

from paradero.config import settings
from paradero.core.errors import (
    CapabilityUnavailable,
    ParaderoError,
    PermissionDenied,
    TransientPositionFailure,
)
from paradero.core.geo_math import Coordinate

logger = logging.getLogger(__name__)


class PositionErrorCode(enum.IntEnum):
    PERMISSION_DENIED = 1
    POSITION_UNAVAILABLE = 2
    TIMEOUT = 3


class PositionError(Exception):
    """Raised or reported by a sensor."""

    def __init__(self, code: PositionErrorCode, message: str = "") -> None:
        super().__init__(message or code.name)
        self.code = code


RETRYABLE_CODES = {PositionErrorCode.POSITION_UNAVAILABLE, PositionErrorCode.TIMEOUT}


@dataclass(frozen=True)
class PositionOptions:
    high_accuracy: bool = True
    timeout_seconds: float = 5.0
    maximum_age_seconds: float = 0.1


class PositionSensor(Protocol):
    async def request_once(self, options: PositionOptions) -> Coordinate: ...

    def watch(
        self,
        options: PositionOptions,
        on_update: Callable[[Coordinate], None],
        on_error: Callable[[PositionError], None],
    ) -> Hashable: ...

    def cancel_watch(self, handle: Hashable) -> None: ...


class PermissionState(str, enum.Enum):
    IDLE = "idle"
    PROMPTING = "prompting"
    GRANTED = "granted"
    DENIED = "denied"
    UNSUPPORTED = "unsupported"


@dataclass
class WatchSession:
    handle: Hashable
    expiry: asyncio.TimerHandle | None = None


@dataclass(frozen=True)
class Idle:
    kind = PermissionState.IDLE


@dataclass(frozen=True)
class Prompting:
    attempt: int = 0
    kind = PermissionState.PROMPTING


@dataclass(frozen=True)
class Granted:
    position: Coordinate
    watch: WatchSession | None = None
    kind = PermissionState.GRANTED


@dataclass(frozen=True)
class Denied:
    kind = PermissionState.DENIED


@dataclass(frozen=True)
class Unsupported:
    kind = PermissionState.UNSUPPORTED


AcquisitionState = Union[Idle, Prompting, Granted, Denied, Unsupported]


@dataclass(frozen=True)
class GeolocationStatus:
    state: PermissionState
    position: Coordinate | None
    error: BaseException | None


class GeolocationAcquisition:
    """Owns the device position sensor for one screen.

    ``sensor`` may be None when the device has no position API at all.
    """

    def __init__(
        self,
        sensor: PositionSensor | None,
        max_retries: int | None = None,
        retry_delay_seconds: float | None = None,
        watch_seconds: float | None = None,
        options: PositionOptions | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.sensor = sensor
        self.max_retries = settings.geolocation_max_retries if max_retries is None else max_retries
        self.retry_delay_seconds = (
            settings.geolocation_retry_delay_seconds if retry_delay_seconds is None else retry_delay_seconds
        )
        self.watch_seconds = settings.geolocation_watch_seconds if watch_seconds is None else watch_seconds
        self.options = options or PositionOptions(
            high_accuracy=True,
            timeout_seconds=settings.geolocation_timeout_seconds,
            maximum_age_seconds=settings.geolocation_maximum_age_seconds,
        )
        self._sleep = sleep
        self._state: AcquisitionState = Idle()
        self._position: Coordinate | None = None
        self._error: BaseException | None = None
        # Bumped on every restart/stop; stale attempts compare against it
        self._generation = 0
        # Sensor request or retry delay currently awaited by request_permission
        self._inflight: asyncio.Future | None = None

    # ------------------------------------------------------------------
    # Read side

    @property
    def state(self) -> PermissionState:
        return self._state.kind

    @property
    def position(self) -> Coordinate | None:
        return self._position

    @property
    def error(self) -> BaseException | None:
        return self._error

    @property
    def watching(self) -> bool:
        return isinstance(self._state, Granted) and self._state.watch is not None

    def status(self) -> GeolocationStatus:
        return GeolocationStatus(state=self.state, position=self._position, error=self._error)

    # ------------------------------------------------------------------
    # Commands

    async def request_permission(self) -> GeolocationStatus:
        """Prompt for a first high-accuracy fix, retrying transient failures."""
        self._cancel_watch()
        self._cancel_inflight()
        self._generation += 1
        generation = self._generation

        if self.sensor is None:
            self._enter(Unsupported(), CapabilityUnavailable("Geolocation API not supported"))
            logger.info("Position sensor unavailable")
            return self.status()

        self._error = None
        attempt = 0
        while True:
            self._state = Prompting(attempt=attempt)
            try:
                position = await self._await_inflight(asyncio.wait_for(
                    self.sensor.request_once(self.options),
                    timeout=self.options.timeout_seconds,
                ))
            except asyncio.CancelledError:
                if generation != self._generation:
                    return self.status()
                raise
            except asyncio.TimeoutError:
                failure = PositionError(PositionErrorCode.TIMEOUT, "Position request timed out")
            except PositionError as e:
                failure = e
            else:
                if generation != self._generation:
                    return self.status()
                self._grant(position)
                return self.status()

            if generation != self._generation:
                logger.debug("Discarding superseded position attempt")
                return self.status()

            if failure.code == PositionErrorCode.PERMISSION_DENIED:
                self._enter(Denied(), PermissionDenied(str(failure)))
                logger.info("Location permission denied")
                return self.status()

            if failure.code in RETRYABLE_CODES and attempt < self.max_retries:
                attempt += 1
                logger.warning(
                    "Position attempt %d/%d failed (%s), retrying in %.1fs",
                    attempt, self.max_retries + 1, failure.code.name, self.retry_delay_seconds,
                )
                try:
                    await self._await_inflight(self._sleep(self.retry_delay_seconds))
                except asyncio.CancelledError:
                    if generation != self._generation:
                        return self.status()
                    raise
                if generation != self._generation:
                    return self.status()
                continue

            # Out of retries: stay in prompting so the caller can offer manual entry
            err = TransientPositionFailure(f"No position fix after {attempt + 1} attempts: {failure}")
            err.__cause__ = failure
            self._error = err
            logger.warning("Giving up on position fix: %s", failure.code.name)
            return self.status()

    async def check_permission(self) -> GeolocationStatus:
        """Probe the permission state without prompting the rider."""
        if self.sensor is None:
            self._cancel_watch()
            self._enter(Unsupported(), CapabilityUnavailable("Geolocation API not supported"))
            return self.status()

        query = getattr(self.sensor, "query_permission", None)
        if query is None:
            self._error = CapabilityUnavailable("Permission query not supported")
            return self.status()

        generation = self._generation
        try:
            answer = await query()
        except ParaderoError as e:
            self._error = e
            return self.status()
        if generation != self._generation:
            return self.status()

        if answer == "granted":
            # Already allowed, so this fix does not prompt the rider
            if not isinstance(self._state, Granted):
                return await self.request_permission()
        elif answer == "denied":
            self._cancel_watch()
            self._enter(Denied(), PermissionDenied("Location permission denied"))
        return self.status()

    def rearm_watch(self) -> bool:
        """Start a new time-boxed watch after a previous one expired."""
        if not isinstance(self._state, Granted):
            return False
        self._start_watch(self._state.position)
        return True

    def stop(self) -> None:
        """Cancel the watch and any attempt in flight (screen teardown)."""
        self._generation += 1
        self._cancel_inflight()
        self._cancel_watch()
        if isinstance(self._state, Prompting):
            self._state = Idle()

    close = stop

    # ------------------------------------------------------------------
    # Internals

    async def _await_inflight(self, aw):
        task = asyncio.ensure_future(aw)
        self._inflight = task
        try:
            return await task
        finally:
            if self._inflight is task:
                self._inflight = None

    def _cancel_inflight(self) -> None:
        if self._inflight is not None and not self._inflight.done():
            self._inflight.cancel()
        self._inflight = None

    def _enter(self, state: AcquisitionState, error: BaseException | None) -> None:
        self._state = state
        self._error = error

    def _grant(self, position: Coordinate) -> None:
        self._position = position
        self._error = None
        logger.info("Position acquired (%.5f, %.5f)", position.lat, position.lon)
        self._start_watch(position)

    def _start_watch(self, position: Coordinate) -> None:
        self._cancel_watch()
        session = WatchSession(handle=None)

        def on_update(pos: Coordinate) -> None:
            if self._current_watch() is not session:
                return
            self._position = pos
            self._error = None
            self._state = Granted(position=pos, watch=session)

        def on_error(err: PositionError) -> None:
            if self._current_watch() is not session:
                return
            if err.code == PositionErrorCode.PERMISSION_DENIED:
                self._cancel_watch()
                self._enter(Denied(), PermissionDenied(str(err)))
                logger.info("Location permission revoked while watching")
                return
            # Keep the last known position
            self._error = err

        self._state = Granted(position=position, watch=session)
        session.handle = self.sensor.watch(self.options, on_update, on_error)
        if self._current_watch() is not session:
            # The sensor reported denial from inside watch(); release the handle
            self.sensor.cancel_watch(session.handle)
            return
        if self.watch_seconds > 0:
            loop = asyncio.get_running_loop()
            session.expiry = loop.call_later(self.watch_seconds, self._expire_watch, session)

    def _expire_watch(self, session: WatchSession) -> None:
        if self._current_watch() is not session:
            return
        logger.debug("Watch session expired after %.1fs", self.watch_seconds)
        self._cancel_watch()

    def _current_watch(self) -> WatchSession | None:
        if isinstance(self._state, Granted):
            return self._state.watch
        return None

    def _cancel_watch(self) -> None:
        session = self._current_watch()
        if session is None:
            return
        if session.expiry is not None:
            session.expiry.cancel()
        if self.sensor is not None and session.handle is not None:
            self.sensor.cancel_watch(session.handle)
        self._state = Granted(position=self._state.position, watch=None)
