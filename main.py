"""
TalePick account service.

Application factory; serve with an ASGI server, e.g.
    uvicorn main:create_app --factory

Secrets come from TALEPICK_* environment variables (or .env).
"""

import logging
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI

from api.credits import create_credits_router
from api.errors import register_error_handlers
from api.health import create_health_router
from api.middleware import RequestIDMiddleware
from auth.api import create_auth_router
from auth.config import AuthConfig
from auth.database import UserStore
from auth.maintenance import CleanupReport, run_cleanup
from auth.rate_limiter import RateLimiter
from auth.security_logger import SecurityLogger
from auth.security_middleware import AuthMiddleware
from auth.service import AuthService
from auth.session import SessionManager
from auth.verification import VerificationService
from auth.verification_store import VerificationStore
from clients.email_client import EmailGatewayClient
from clients.postgres_client import PostgresClient
from clients.secrets_client import get_database_url, get_email_config, get_valkey_url
from clients.valkey_client import ValkeyClient
from core.services.credit_service import CreditService

logger = logging.getLogger(__name__)


def build_services(config: AuthConfig) -> dict:
    """Connect infrastructure and wire services. Fails fast on missing secrets."""
    postgres = PostgresClient(get_database_url())
    valkey = ValkeyClient(get_valkey_url())
    email_client = EmailGatewayClient(**get_email_config())

    store = VerificationStore(postgres)
    security_logger = SecurityLogger(postgres)
    session_manager = SessionManager(valkey, config)
    verification = VerificationService(
        config=config,
        store=store,
        rate_limiter=RateLimiter(store, config),
        email_client=email_client,
        security_logger=security_logger,
    )

    return {
        "postgres": postgres,
        "valkey": valkey,
        "store": store,
        "security_logger": security_logger,
        "session_manager": session_manager,
        "auth": AuthService(
            config=config,
            users=UserStore(postgres),
            session_manager=session_manager,
            verification=verification,
            security_logger=security_logger,
        ),
        "credits": CreditService(postgres),
    }


def create_app(config: AuthConfig | None = None) -> FastAPI:
    load_dotenv()
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = config or AuthConfig()
    services = build_services(config)

    app = FastAPI(title=config.app_name)
    app.add_middleware(AuthMiddleware, session_manager=services["session_manager"])
    app.add_middleware(RequestIDMiddleware)
    register_error_handlers(app)

    app.include_router(create_auth_router(services["auth"]), prefix="/auth")
    app.include_router(create_credits_router(services["credits"]), prefix="/credits")
    app.include_router(create_health_router(services["postgres"], services["valkey"]))

    logger.info("%s started", config.app_name)
    return app


def run_maintenance(archive_path: Path = Path("security_events.jsonl")) -> CleanupReport:
    """Entry point for the scheduled cleanup job."""
    load_dotenv()
    logging.basicConfig(level=logging.INFO)

    config = AuthConfig()
    services = build_services(config)
    try:
        return run_cleanup(config, services["store"], services["security_logger"], archive_path)
    finally:
        services["postgres"].close()
        services["valkey"].close()


if __name__ == "__main__":
    run_maintenance()
