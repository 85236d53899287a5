import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from .core.config import get_settings
from .core.db import create_tables, get_engine, get_session_factory
from .core.logging import configure_logging
from .core.responses import ErrorCodes, error_response, success_response
from .dependencies import build_services
from .errors import DetailingError
from .notifications import Notifier
from .payments import PaymentGateway
from .routes import ROUTERS

logger = logging.getLogger(__name__)


def create_app(
    engine: Optional[AsyncEngine] = None,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    notifier: Optional[Notifier] = None,
    payments: Optional[PaymentGateway] = None,
) -> FastAPI:
    settings = get_settings()
    engine = engine or get_engine()
    session_factory = session_factory or get_session_factory()

    app = FastAPI(title="Detailing Booking Backend")
    app.state.services = build_services(
        session_factory, settings, notifier=notifier, payments=payments
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins_list or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(DetailingError)
    async def handle_detailing_error(request: Request, exc: DetailingError):
        if exc.http_status >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return JSONResponse(
            status_code=exc.http_status,
            content=error_response(exc.code, exc.message, exc.details),
        )

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=422,
            content=error_response(
                ErrorCodes.VALIDATION_ERROR,
                "Invalid request",
                {"errors": jsonable_encoder(exc.errors())},
            ),
        )

    @app.on_event("startup")
    async def on_startup():
        configure_logging(settings.log_level)
        await create_tables(engine)
        logger.info("Detailing backend started")

    @app.get("/health")
    async def health():
        return success_response({"status": "ok"})

    for router in ROUTERS:
        app.include_router(router)

    return app


app = create_app()
