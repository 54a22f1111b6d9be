from fastapi import APIRouter, Depends
from starlette.concurrency import run_in_threadpool
from core.dependencies import get_usage_ledger
from models.user import User
from services.usage_ledger import UsageLedger
from utils.security import get_current_user

router = APIRouter(prefix="/api/usage", tags=["usage"])

@router.get("/me")
async def get_my_usage(
    current_user: User = Depends(get_current_user),
    usage_ledger: UsageLedger = Depends(get_usage_ledger)
):
    """Remaining interview quota for the current user"""
    usage = await run_in_threadpool(usage_ledger.check_user_usage, current_user.id)
    record = await run_in_threadpool(usage_ledger.get_usage, current_user.id)
    return {
        "can_use": usage.can_use,
        "remaining_interviews": usage.remaining_interviews,
        "interviews": record.interviews if record else 0,
    }
