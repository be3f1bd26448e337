from starlette.requests import HTTPConnection

from proctorwatch.core.container import Container
from proctorwatch.services.detectors import YoloObjectDetector
from proctorwatch.services.ledger import EventLedger
from proctorwatch.services.lifecycle import SessionLifecycleManager
from proctorwatch.services.monitor import MonitorRegistry


def get_container(request: HTTPConnection) -> Container:
    return request.app.state.container


def get_lifecycle(request: HTTPConnection) -> SessionLifecycleManager:
    return get_container(request).lifecycle


def get_ledger(request: HTTPConnection) -> EventLedger:
    return get_container(request).ledger


def get_monitors(request: HTTPConnection) -> MonitorRegistry:
    return get_container(request).monitors


def get_object_detector(request: HTTPConnection) -> YoloObjectDetector:
    return get_container(request).object_detector
