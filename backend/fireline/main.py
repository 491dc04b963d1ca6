"""Fireline FastAPI application."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from fireline.config import settings
from fireline.db.factory import close_database, create_db_engine, create_session_maker, init_database
from fireline.errors import IncidentWriteFailed, StorageError, ValidationError
from fireline.logging_config import setup_logging
from fireline.routers.api import router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(settings.log_level)
    engine = create_db_engine()
    app.state.engine = engine
    app.state.session_maker = create_session_maker(engine)
    if settings.auto_create_schema:
        await init_database(engine)
    yield
    await close_database(engine)


async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": exc.message, "details": ", ".join(exc.fields) or None})


async def write_failed_handler(request: Request, exc: IncidentWriteFailed) -> JSONResponse:
    # Transaction already rolled back; details are sanitized
    return JSONResponse(status_code=500, content={"error": exc.message, "details": exc.details})


async def storage_error_handler(request: Request, exc: StorageError) -> JSONResponse:
    logger.error("Database error on %s %s: %s", request.method, request.url.path, exc.cause)
    return JSONResponse(status_code=500, content={"error": "Database error", "details": exc.details})


def create_app() -> FastAPI:
    app = FastAPI(
        title="Fireline API",
        description="Fire/EMS incident management",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(ValidationError, validation_error_handler)
    app.add_exception_handler(IncidentWriteFailed, write_failed_handler)
    app.add_exception_handler(StorageError, storage_error_handler)
    app.include_router(router)
    return app


app = create_app()
