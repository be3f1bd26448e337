import logging
import traceback

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from mangum import Mangum

from proctorwatch.api.v1 import router as api_v1_router
from proctorwatch.api.v1.websocket import router as ws_router
from proctorwatch.core.config import Settings, get_settings
from proctorwatch.core.container import build_container
from proctorwatch.core.errors import ProctoringError
from proctorwatch.core.store import SessionStore

logger = logging.getLogger(__name__)


def create_app(settings: Settings | None = None, store: SessionStore | None = None) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(level=settings.LOG_LEVEL.upper())

    app = FastAPI(title="ProctorWatch")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ProctoringError)
    async def proctoring_exception_handler(request: Request, exc: ProctoringError):
        logger.info(
            "Request rejected",
            extra={"path": request.url.path, "status": exc.status_code, "detail": exc.detail},
        )
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error("Unhandled error on %s %s: %s", request.method, request.url.path, exc)
        logger.debug(traceback.format_exc())
        return JSONResponse(
            status_code=500,
            content={"detail": str(exc)},
        )

    @app.on_event("startup")
    async def on_startup() -> None:
        app.state.container = await build_container(settings, store)

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        await app.state.container.close()

    @app.get("/")
    async def health_check() -> dict:
        return {"status": "ok", "version": "1.0"}

    app.include_router(api_v1_router, prefix="/api/v1")
    app.include_router(ws_router)
    return app


app = create_app()

handler = Mangum(app)
