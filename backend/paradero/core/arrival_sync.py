"""Cadence-driven refresh of a stop's live arrivals.

Each cycle lasts ``interval_ms``. Halfway through, the engine starts a
background fetch and parks its result; the parked snapshot is applied only
when the cycle completes, so the visible list always changes together with
the progress indicator reset, whatever the network latency was.
"""

import asyncio
import logging
import math
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from paradero.config import settings
from paradero.core.red_client import VehicleReport

logger = logging.getLogger(__name__)

# Fraction of the cycle at which the background fetch starts
FETCH_TRIGGER_FRACTION = 0.5


@dataclass
class SyncCycle:
    interval_ms: float
    elapsed_ms: float = 0.0
    fetch_triggered: bool = False
    pending_snapshot: Any = None
    paused: bool = False
    number: int = 0  # completed cycles; tags fetches with the cycle they belong to

    @property
    def progress(self) -> float:
        return min(1.0, self.elapsed_ms / self.interval_ms)


class LiveArrivalSync:
    """Single-owner cycle clock: fetch at 50%, apply exactly once at 100%.

    ``tick`` is the only method that mutates the cycle. ``run`` drives it
    from the event loop at ``frame_ms`` cadence, standing in for animation
    frames.
    """

    def __init__(
        self,
        fetch: Callable[[], Awaitable[Any]],
        apply: Callable[[Any], None],
        interval_ms: float | None = None,
        frame_ms: float | None = None,
    ) -> None:
        interval = settings.sync_interval_ms if interval_ms is None else interval_ms
        if interval <= 0:
            raise ValueError("interval_ms must be positive")
        self._fetch = fetch
        self._apply = apply
        self.frame_ms = settings.sync_frame_ms if frame_ms is None else frame_ms
        self._cycle = SyncCycle(interval_ms=interval)
        self._fetch_tasks: set[asyncio.Task] = set()
        self._run_task: asyncio.Task | None = None
        self._closed = False

    @property
    def interval_ms(self) -> float:
        return self._cycle.interval_ms

    @property
    def progress(self) -> float:
        return self._cycle.progress

    @property
    def paused(self) -> bool:
        return self._cycle.paused

    @property
    def cycles_completed(self) -> int:
        return self._cycle.number

    def tick(self, delta_ms: float) -> None:
        """Advance the clock by ``delta_ms``; triggers the fetch and the apply."""
        cycle = self._cycle
        if self._closed or cycle.paused or delta_ms <= 0:
            return

        cycle.elapsed_ms += delta_ms

        if not cycle.fetch_triggered and cycle.elapsed_ms >= cycle.interval_ms * FETCH_TRIGGER_FRACTION:
            cycle.fetch_triggered = True
            task = asyncio.ensure_future(self._fetch_into(cycle.number))
            self._fetch_tasks.add(task)
            task.add_done_callback(self._fetch_tasks.discard)

        if cycle.elapsed_ms >= cycle.interval_ms:
            snapshot = cycle.pending_snapshot
            try:
                self._apply(snapshot)
            finally:
                cycle.number += 1
                cycle.elapsed_ms = 0.0
                cycle.fetch_triggered = False
                cycle.pending_snapshot = None

    async def _fetch_into(self, number: int) -> None:
        try:
            snapshot = await self._fetch()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("Arrival fetch failed in cycle %d: %s", number, e)
            snapshot = None

        # A late result belongs to a cycle that was already applied
        if self._closed or number != self._cycle.number:
            logger.debug("Discarding fetch result from finished cycle %d", number)
            return
        self._cycle.pending_snapshot = snapshot

    def pause(self) -> None:
        self._cycle.paused = True

    def resume(self) -> None:
        # Elapsed time is kept, so the cycle continues where it stopped
        self._cycle.paused = False

    def start(self) -> asyncio.Task:
        if self._run_task is None or self._run_task.done():
            self._run_task = asyncio.ensure_future(self.run())
        return self._run_task

    async def run(self) -> None:
        """Drive ``tick`` from the running loop until closed."""
        loop = asyncio.get_running_loop()
        last = loop.time()
        while not self._closed:
            await asyncio.sleep(self.frame_ms / 1000)
            now = loop.time()
            delta_ms = (now - last) * 1000
            last = now
            # Paused frames are dropped, so resuming does not jump ahead
            self.tick(delta_ms)

    async def close(self) -> None:
        """Stop the clock; no fetch result or apply happens afterwards."""
        self._closed = True
        tasks = [t for t in (self._run_task, *self._fetch_tasks) if t is not None and not t.done()]
        for t in tasks:
            t.cancel()
        for t in tasks:
            try:
                await t
            except asyncio.CancelledError:
                pass
        self._cycle.pending_snapshot = None


@dataclass(frozen=True)
class ArrivalEntity:
    vehicle_id: str
    line_id: str
    distance_meters: float | None
    min_eta: int | None
    max_eta: int | None
    valid: bool
    previous_distance_meters: float | None = None
    previous_min_eta: int | None = None
    destination: str = ""
    color: str = ""

    @property
    def key(self) -> tuple[str, str]:
        return (self.line_id, self.vehicle_id)

    @property
    def arriving_now(self) -> bool:
        return self.valid and self.min_eta == 0


def arrival_sort_key(entity: ArrivalEntity) -> tuple:
    eta = entity.min_eta if entity.min_eta is not None else math.inf
    return (not entity.valid, not entity.arriving_now, eta)


def is_usable_report(report: VehicleReport) -> bool:
    if not report.line_id:
        return False
    if not report.line_valid:
        return True
    return bool(report.vehicle_id) and report.min_eta is not None


def build_entities(
    reports: list[VehicleReport],
    previous: tuple[ArrivalEntity, ...] = (),
) -> list[ArrivalEntity]:
    """Ranked entities for ``reports``, carrying over last cycle's values by key."""
    prior = {e.key: e for e in previous}
    entities = []
    for r in reports:
        if not is_usable_report(r):
            logger.debug("Skipping unusable report for line %r", r.line_id)
            continue
        before = prior.get((r.line_id, r.vehicle_id))
        entities.append(ArrivalEntity(
            vehicle_id=r.vehicle_id,
            line_id=r.line_id,
            distance_meters=r.distance_meters,
            min_eta=r.min_eta,
            max_eta=r.max_eta,
            valid=r.line_valid,
            previous_distance_meters=before.distance_meters if before else None,
            previous_min_eta=before.min_eta if before else None,
            destination=r.destination,
            color=r.color,
        ))
    entities.sort(key=arrival_sort_key)
    return entities


@dataclass
class ArrivalBoard:
    """The published arrivals for one stop; the ``apply`` side of the sync.

    A ``None`` snapshot means the fetch failed: the last good list stays
    published and ``error`` is raised instead.
    """

    on_publish: Callable[["ArrivalBoard"], None] | None = None
    entities: tuple[ArrivalEntity, ...] = ()
    error: bool = False
    applied_cycles: int = 0

    def apply(self, snapshot: list[VehicleReport] | None) -> tuple[ArrivalEntity, ...]:
        self.applied_cycles += 1
        if snapshot is None:
            self.error = True
            logger.debug("No snapshot this cycle, keeping %d arrivals", len(self.entities))
        else:
            self.entities = tuple(build_entities(snapshot, self.entities))
            self.error = False
        if self.on_publish is not None:
            self.on_publish(self)
        return self.entities
