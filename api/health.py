"""GET /health - liveness of the service and its backing stores."""

import logging

from fastapi import APIRouter
from starlette.responses import JSONResponse

from api.base import error_response, success_response, ErrorCodes
from clients.postgres_client import PostgresClient
from clients.valkey_client import ValkeyClient

logger = logging.getLogger(__name__)


def create_health_router(postgres: PostgresClient, valkey: ValkeyClient) -> APIRouter:
    router = APIRouter(tags=["health"])

    @router.get("/health")
    async def health():
        checks = {}
        try:
            checks["postgres"] = postgres.execute_scalar("SELECT 1") == 1
        except Exception as e:
            logger.error("Postgres health check failed: %s", e)
            checks["postgres"] = False
        try:
            checks["valkey"] = valkey.ping()
        except Exception as e:
            logger.error("Valkey health check failed: %s", e)
            checks["valkey"] = False

        if not all(checks.values()):
            failed = ", ".join(name for name, ok in checks.items() if not ok)
            return JSONResponse(
                status_code=503,
                content=error_response(
                    ErrorCodes.SERVICE_UNAVAILABLE,
                    f"Unhealthy: {failed}",
                    details=checks,
                ).model_dump(mode="json"),
            )

        return success_response({"status": "ok", "checks": checks}).model_dump(mode="json")

    return router
