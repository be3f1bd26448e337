from fastapi import APIRouter

from proctorwatch.api.v1.endpoints.events import router as events_router
from proctorwatch.api.v1.endpoints.proctoring import router as proctoring_router
from proctorwatch.api.v1.endpoints.reports import router as reports_router
from proctorwatch.api.v1.endpoints.sessions import router as sessions_router


router = APIRouter()
router.include_router(sessions_router)
router.include_router(events_router)
router.include_router(reports_router)
router.include_router(proctoring_router)
