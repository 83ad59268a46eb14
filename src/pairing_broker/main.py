"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncEngine

from pairing_broker.api.routes import router as api_router
from pairing_broker.config import Settings, settings as default_settings
from pairing_broker.database.engine import build_engine, build_session_factory, init_db
from pairing_broker.errors import BrokerError
from pairing_broker.gateways.base import AccountGateway
from pairing_broker.gateways.sql import SqlGateway
from pairing_broker.gateways.supabase import SupabaseGateway
from pairing_broker.services.connection_codes import ConnectionCodeFlow
from pairing_broker.services.email_service import OtpMailer
from pairing_broker.services.messaging import MessageRelay
from pairing_broker.services.otp_flow import OtpFlow
from pairing_broker.store.expiry_store import Clock, ExpiryStore, ExpirySweeper, utc_now

logging.basicConfig(
    level=logging.DEBUG if default_settings.debug else logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)

logger = logging.getLogger(__name__)


def build_gateway(cfg: Settings) -> tuple[AccountGateway, AsyncEngine | None]:
    """Return the configured gateway and, for the SQL backend, its engine."""
    if cfg.gateway_backend == "sql":
        engine = build_engine(cfg.database_url, echo=cfg.debug)
        return SqlGateway(build_session_factory(engine)), engine
    if cfg.gateway_backend == "supabase":
        return (
            SupabaseGateway(
                cfg.supabase_url,
                cfg.supabase_service_role_key,
                timeout=cfg.http_timeout_seconds,
            ),
            None,
        )
    raise ValueError(f"Unknown gateway backend: {cfg.gateway_backend!r}")


def create_app(
    cfg: Settings | None = None,
    *,
    gateway: AccountGateway | None = None,
    mailer: OtpMailer | None = None,
    clock: Clock = utc_now,
) -> FastAPI:
    """Wire stores, controllers and routes into a FastAPI app.

    Collaborators can be injected (tests pass fakes); otherwise they are
    built from *cfg*.
    """
    cfg = cfg or default_settings
    engine = None
    if gateway is None:
        gateway, engine = build_gateway(cfg)
    mailer = mailer or OtpMailer(cfg)

    otp_store = ExpiryStore(clock, name="otp")
    code_store = ExpiryStore(clock, name="connection-codes")
    sweeper = ExpirySweeper([otp_store, code_store], cfg.sweep_interval_seconds)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup / shutdown lifecycle hook."""
        logger.info("Starting %s …", cfg.app_name)
        if engine is not None:
            await init_db(engine)
            logger.info("Database initialised")
        sweeper.start()
        yield
        await sweeper.stop()
        if engine is not None:
            await engine.dispose()
        logger.info("Shutting down %s …", cfg.app_name)

    app = FastAPI(
        title=cfg.app_name,
        description="Signup OTP, login, connection-code pairing and messaging relay",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.gateway = gateway
    app.state.otp_store = otp_store
    app.state.code_store = code_store
    app.state.sweeper = sweeper
    app.state.otp_flow = OtpFlow(
        otp_store, gateway, mailer, clock, ttl=timedelta(seconds=cfg.otp_ttl_seconds)
    )
    app.state.code_flow = ConnectionCodeFlow(
        code_store,
        gateway,
        clock,
        default_expiration_minutes=cfg.connection_code_ttl_minutes,
    )
    app.state.message_relay = MessageRelay(gateway)

    app.add_exception_handler(BrokerError, _broker_error_handler)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)
    app.add_exception_handler(Exception, _unexpected_error_handler)
    app.include_router(api_router)

    @app.get("/health")
    async def health_check():
        """Simple liveness probe."""
        return {
            "status": "healthy",
            "app": cfg.app_name,
            "pendingOtps": len(otp_store),
            "liveCodes": len(code_store),
        }

    return app


async def _broker_error_handler(request: Request, exc: BrokerError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.message},
    )


async def _request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    fields = sorted({str(err["loc"][-1]) for err in exc.errors() if err.get("loc")})
    message = f"Missing or invalid fields: {', '.join(fields)}" if fields else "Invalid request body"
    return JSONResponse(status_code=400, content={"success": False, "error": message})


async def _unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": "Internal server error"},
    )


app = create_app()


def run() -> None:
    """Console entry point: serve the app with uvicorn."""
    import uvicorn

    uvicorn.run(app, host=default_settings.host, port=default_settings.port)
