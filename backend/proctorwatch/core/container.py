import logging
from dataclasses import dataclass

from proctorwatch.core.config import Settings
from proctorwatch.core.database import create_engine
from proctorwatch.core.sql_store import SqlSessionStore
from proctorwatch.core.store import InMemorySessionStore, SessionStore
from proctorwatch.services.detectors import YoloObjectDetector
from proctorwatch.services.ledger import EventLedger
from proctorwatch.services.lifecycle import SessionLifecycleManager
from proctorwatch.services.monitor import MonitorRegistry


logger = logging.getLogger(__name__)


@dataclass
class Container:
    """Everything the API needs, built once at startup and closed at shutdown."""

    settings: Settings
    store: SessionStore
    ledger: EventLedger
    monitors: MonitorRegistry
    lifecycle: SessionLifecycleManager
    object_detector: YoloObjectDetector

    async def close(self) -> None:
        await self.monitors.stop_all()
        await self.store.close()


async def build_store(settings: Settings) -> SessionStore:
    if not settings.DATABASE_URL:
        logger.info("Using in-memory session store")
        return InMemorySessionStore()
    store = SqlSessionStore(create_engine(settings.DATABASE_URL))
    await store.init()
    logger.info("Using SQL session store")
    return store


async def build_container(settings: Settings, store: SessionStore | None = None) -> Container:
    store = store or await build_store(settings)
    ledger = EventLedger(store, reject_after_close=settings.REJECT_EVENTS_AFTER_CLOSE)
    monitors = MonitorRegistry(ledger, settings)
    return Container(
        settings=settings,
        store=store,
        ledger=ledger,
        monitors=monitors,
        lifecycle=SessionLifecycleManager(store, ledger, monitors),
        object_detector=YoloObjectDetector(settings.YOLO_MODEL_PATH, settings.YOLO_CONFIDENCE),
    )
