import asyncio
import logging
import time
from collections.abc import Awaitable, Callable

from proctorwatch.core.config import Settings
from proctorwatch.core.errors import ProctoringError, ValidationError
from proctorwatch.schemas.detection import FaceGazeSample, ObjectSample
from proctorwatch.schemas.session import NewEvent, ProctoringEvent
from proctorwatch.services.debouncer import TemporalDebouncer
from proctorwatch.services.detectors import (
    FaceGazeDetector,
    ObjectDetector,
    PushedSampleSource,
    parse_face_gaze,
    parse_objects,
)
from proctorwatch.services.ledger import EventLedger


logger = logging.getLogger(__name__)


class SessionMonitor:
    """Pollers, debouncer and event channel for one session.

    Each detector gets its own poller task. A poll that is still running
    when the next one is due makes that tick a skip. Qualifying events go
    onto `channel`; the sink task appends them to the ledger and hands the
    stored event to every subscriber queue.
    """

    def __init__(
        self,
        session_id: str,
        ledger: EventLedger,
        *,
        face_detector: FaceGazeDetector | None = None,
        object_detector: ObjectDetector | None = None,
        face_interval_ms: int = 1000,
        object_interval_ms: int = 2000,
        no_face_threshold_ms: int = 10_000,
        look_away_threshold_ms: int = 5_000,
        object_confidence_floor: float = 0.5,
        reset_no_face_on_emit: bool = False,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.session_id = session_id
        self.ledger = ledger
        self.face_detector = face_detector
        self.object_detector = object_detector
        self.face_interval_ms = face_interval_ms
        self.object_interval_ms = object_interval_ms
        self._clock = clock
        self.debouncer = TemporalDebouncer(
            self.now_ms(),
            no_face_threshold_ms=no_face_threshold_ms,
            look_away_threshold_ms=look_away_threshold_ms,
            object_confidence_floor=object_confidence_floor,
            reset_no_face_on_emit=reset_no_face_on_emit,
        )
        self.channel: asyncio.Queue[NewEvent] = asyncio.Queue()
        self._subscribers: set[asyncio.Queue[ProctoringEvent]] = set()
        self._tasks: list[asyncio.Task] = []
        self._ticks: set[asyncio.Task] = set()
        self._inflight: set[str] = set()
        self.stopped = False

    def now_ms(self) -> float:
        return self._clock() * 1000

    @property
    def running(self) -> bool:
        return bool(self._tasks) and not self.stopped

    def start(self) -> None:
        if self._tasks or self.stopped:
            return
        self._tasks.append(asyncio.create_task(self._sink(), name=f"sink:{self.session_id}"))
        if self.face_detector is not None:
            self._tasks.append(
                asyncio.create_task(
                    self._poll("face", self.face_interval_ms, self._face_tick),
                    name=f"face:{self.session_id}",
                )
            )
        if self.object_detector is not None:
            self._tasks.append(
                asyncio.create_task(
                    self._poll("objects", self.object_interval_ms, self._object_tick),
                    name=f"objects:{self.session_id}",
                )
            )
        logger.info(
            "Monitoring started",
            extra={
                "session_id": self.session_id,
                "face": self.face_detector is not None,
                "objects": self.object_detector is not None,
            },
        )

    async def stop(self) -> None:
        if self.stopped:
            return
        self.stopped = True
        pending = [*self._tasks, *self._ticks]
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        self._tasks.clear()
        self._ticks.clear()
        logger.info(
            "Monitoring stopped",
            extra={"session_id": self.session_id, "dropped_events": self.channel.qsize()},
        )

    def subscribe(self) -> asyncio.Queue[ProctoringEvent]:
        queue: asyncio.Queue[ProctoringEvent] = asyncio.Queue()
        self._subscribers.add(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue[ProctoringEvent]) -> None:
        self._subscribers.discard(queue)

    async def ingest_face_gaze(self, sample: FaceGazeSample | dict | None) -> list[ProctoringEvent]:
        """Run one face/gaze tick now and store what it emits."""
        if self.stopped:
            return []
        return await self._store_all(self.debouncer.on_face_gaze(sample, self.now_ms()))

    async def ingest_objects(self, sample: ObjectSample | dict | list | None) -> list[ProctoringEvent]:
        if self.stopped:
            return []
        return await self._store_all(self.debouncer.on_objects(sample, self.now_ms()))

    async def submit_face_gaze(self, raw: FaceGazeSample | dict) -> tuple[bool, list[ProctoringEvent]]:
        """Hand a sample from the network to the monitor.

        With a pushed-sample poller the sample waits for the next face tick
        and `(True, [])` comes back. Otherwise it is ingested now and the
        stored events are returned.
        """
        sample = parse_face_gaze(raw)
        if sample is None:
            raise ValidationError("Invalid face/gaze sample")
        if isinstance(self.face_detector, PushedSampleSource):
            self.face_detector.push_face_gaze(sample)
            return True, []
        return False, await self.ingest_face_gaze(sample)

    async def submit_objects(self, raw: ObjectSample | dict | list) -> tuple[bool, list[ProctoringEvent]]:
        sample = parse_objects(raw)
        if sample is None:
            raise ValidationError("Invalid object sample")
        if isinstance(self.object_detector, PushedSampleSource):
            self.object_detector.push_objects(sample)
            return True, []
        return False, await self.ingest_objects(sample)

    async def _store_all(self, events: list[NewEvent]) -> list[ProctoringEvent]:
        stored = []
        for event in events:
            result = await self._store(event)
            if result is not None:
                stored.append(result)
        return stored

    async def _store(self, event: NewEvent) -> ProctoringEvent | None:
        try:
            stored = await self.ledger.append_event(self.session_id, event)
        except ProctoringError as exc:
            logger.warning(
                "Event rejected by ledger",
                extra={"session_id": self.session_id, "event_type": event.type, "reason": exc.detail},
            )
            return None
        for queue in list(self._subscribers):
            queue.put_nowait(stored)
        return stored

    async def _sink(self) -> None:
        while True:
            event = await self.channel.get()
            await self._store(event)

    def _publish(self, events: list[NewEvent]) -> None:
        for event in events:
            self.channel.put_nowait(event)

    async def _poll(self, name: str, interval_ms: int, tick: Callable[[], Awaitable[None]]) -> None:
        while not self.stopped:
            if name in self._inflight:
                logger.debug("Poll skipped", extra={"session_id": self.session_id, "signal": name})
            else:
                task = asyncio.create_task(self._run_tick(name, tick))
                self._ticks.add(task)
                task.add_done_callback(self._ticks.discard)
            await asyncio.sleep(interval_ms / 1000)

    async def _run_tick(self, name: str, tick: Callable[[], Awaitable[None]]) -> None:
        self._inflight.add(name)
        try:
            await tick()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning(
                "Detector call failed",
                extra={"session_id": self.session_id, "signal": name, "error": str(exc)},
            )
        finally:
            self._inflight.discard(name)

    async def _face_tick(self) -> None:
        sample = await self.face_detector.sample_face_and_gaze()
        # A call that outlived stop() must not emit
        if self.stopped:
            return
        self._publish(self.debouncer.on_face_gaze(sample, self.now_ms()))

    async def _object_tick(self) -> None:
        sample = await self.object_detector.sample_objects()
        if self.stopped:
            return
        self._publish(self.debouncer.on_objects(sample, self.now_ms()))


class MonitorRegistry:
    """Active monitors keyed by session id."""

    def __init__(self, ledger: EventLedger, settings: Settings, clock: Callable[[], float] = time.monotonic) -> None:
        self.ledger = ledger
        self.settings = settings
        self.clock = clock
        self._monitors: dict[str, SessionMonitor] = {}

    def _build(
        self,
        session_id: str,
        face_detector: FaceGazeDetector | None,
        object_detector: ObjectDetector | None,
    ) -> SessionMonitor:
        settings = self.settings
        return SessionMonitor(
            session_id,
            self.ledger,
            face_detector=face_detector,
            object_detector=object_detector,
            face_interval_ms=settings.FACE_POLL_INTERVAL_MS,
            object_interval_ms=settings.OBJECT_POLL_INTERVAL_MS,
            no_face_threshold_ms=settings.NO_FACE_THRESHOLD_MS,
            look_away_threshold_ms=settings.LOOK_AWAY_THRESHOLD_MS,
            object_confidence_floor=settings.OBJECT_CONFIDENCE_FLOOR,
            reset_no_face_on_emit=settings.RESET_NO_FACE_ON_EMIT,
            clock=self.clock,
        )

    def get(self, session_id: str) -> SessionMonitor | None:
        return self._monitors.get(session_id)

    async def start(
        self,
        session_id: str,
        face_detector: FaceGazeDetector | None = None,
        object_detector: ObjectDetector | None = None,
    ) -> SessionMonitor:
        current = self._monitors.get(session_id)
        if current is not None:
            await current.stop()
        monitor = self._build(session_id, face_detector, object_detector)
        self._monitors[session_id] = monitor
        monitor.start()
        return monitor

    async def ensure(self, session_id: str) -> SessionMonitor:
        """Existing monitor, or a new one with no pollers for pushed samples."""
        monitor = self._monitors.get(session_id)
        if monitor is None:
            monitor = await self.start(session_id)
        return monitor

    async def stop(self, session_id: str) -> bool:
        monitor = self._monitors.pop(session_id, None)
        if monitor is None:
            return False
        await monitor.stop()
        return True

    async def release(self, session_id: str, monitor: SessionMonitor) -> bool:
        """Stop `monitor` if it is still the one registered for the session."""
        if self._monitors.get(session_id) is not monitor:
            return False
        return await self.stop(session_id)

    async def stop_all(self) -> None:
        for session_id in list(self._monitors):
            await self.stop(session_id)
