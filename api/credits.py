"""Credit endpoints under /credits."""

from fastapi import APIRouter, Query, Request

from api.base import success_response
from core import credits
from core.models import SpendRequest
from core.services.credit_service import CreditService


def _policy() -> dict:
    return {
        "refill_interval_seconds": int(credits.REFILL_INTERVAL.total_seconds()),
        "base_max_credits": credits.BASE_MAX_CREDITS,
        "guest_max_credits": credits.GUEST_MAX_CREDITS,
        "choice_cost": credits.CHOICE_COST,
        "story_start_cost": credits.STORY_START_COST,
        "story_completion_reward": credits.STORY_COMPLETION_REWARD,
        "review_reward": credits.REVIEW_REWARD,
        "min_transaction_amount": credits.MIN_TRANSACTION_AMOUNT,
        "max_transaction_amount": credits.MAX_TRANSACTION_AMOUNT,
        "achievement_bonuses": dict(credits.ACHIEVEMENT_CREDITS_BONUS),
    }


def create_credits_router(credit_service: CreditService) -> APIRouter:
    router = APIRouter(tags=["credits"])

    @router.get("/policy")
    async def get_policy():
        """Public economy constants for clients to display costs and rewards."""
        return success_response(_policy()).model_dump(mode="json")

    @router.get("/balance")
    async def get_balance(request: Request):
        balance = credit_service.get_balance(request.state.user_id)
        return success_response(balance.model_dump(mode="json")).model_dump(mode="json")

    @router.post("/refill")
    async def refill(request: Request):
        """Apply any refill that is due, then report the balance."""
        user_id = request.state.user_id
        refilled = credit_service.refill(user_id)
        balance = credit_service.get_balance(user_id)
        return success_response({
            "refilled": refilled,
            "balance": balance.model_dump(mode="json"),
        }).model_dump(mode="json")

    @router.post("/spend")
    async def spend(request: Request, body: SpendRequest):
        transaction = credit_service.spend(
            request.state.user_id,
            body.amount,
            source=body.source,
            description=body.description,
            related_id=body.related_id,
        )
        return success_response(transaction.model_dump(mode="json")).model_dump(mode="json")

    @router.get("/history")
    async def history(request: Request, limit: int = Query(50, ge=1, le=200)):
        transactions = credit_service.history(request.state.user_id, limit=limit)
        return success_response(
            [t.model_dump(mode="json") for t in transactions]
        ).model_dump(mode="json")

    return router
