"""
Mining routes for the StarX API.
Triggers mining credit batches and exposes balances and job status.
"""

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

import structlog

from starx_mining.api.schemas.common import (
    SuccessResponse,
    create_success_response,
    create_error_response,
)
from starx_mining.api.schemas.mining import BalancesResponse, JobRunResponse, UserBalance
from starx_mining.core.exceptions import (
    JobAlreadyRunningError,
    StoreError,
    TimeUnavailableError,
)
from starx_mining.scheduler.mining_scheduler import MiningScheduler, get_mining_scheduler
from starx_mining.services.mining.database import UserStore
from starx_mining.services.mining_processor import get_user_store

logger = structlog.get_logger(__name__)

router = APIRouter()


def _error(status_code: int, message: str, error_code: str, details=None) -> JSONResponse:
    body = create_error_response(message=message, error_code=error_code, details=details)
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))


@router.api_route(
    "/run",
    methods=["GET", "POST"],
    response_model=SuccessResponse,
    summary="Run Mining Job",
    description="Credit every mining user now against one trusted server time"
)
async def run_mining_job(scheduler: MiningScheduler = Depends(get_mining_scheduler)):
    """Run the mining credit job and report a single success/failure signal."""
    try:
        stats = await scheduler.trigger_manual_run()

    except JobAlreadyRunningError as e:
        logger.info("Mining job trigger rejected, batch in progress")
        return _error(status.HTTP_409_CONFLICT, e.message, e.code)

    except (TimeUnavailableError, StoreError) as e:
        logger.error("Mining job aborted", error=e.message, code=e.code)
        return _error(status.HTTP_503_SERVICE_UNAVAILABLE, e.message, e.code)

    except Exception as e:
        logger.error("Error in mining job", error=str(e))
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Mining job failed", "MINING_JOB_FAILED")

    payload = JobRunResponse(succeeded=stats.succeeded, processing_stats=stats.to_dict())

    if not stats.succeeded:
        return _error(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            f"Mining job completed with {stats.failed + stats.conflicts} failed users",
            "MINING_JOB_PARTIAL_FAILURE",
            payload.model_dump()
        )

    return create_success_response(
        data=payload.model_dump(),
        message=f"Mining job completed: {stats.credited}/{stats.total_users} users credited"
    )


@router.get(
    "/balances",
    response_model=SuccessResponse,
    summary="User Balances",
    description="Read-only list of user balances and mining state"
)
async def get_balances(store: UserStore = Depends(get_user_store)):
    try:
        users = await store.get_all()
    except StoreError as e:
        logger.error("Failed to fetch balances", error=e.message)
        return _error(status.HTTP_503_SERVICE_UNAVAILABLE, "Error fetching balances", e.code)

    balances = [UserBalance.from_record(user_id, data) for user_id, data in sorted(users.items())]
    return create_success_response(
        data=BalancesResponse(total=len(balances), users=balances).model_dump()
    )


@router.get(
    "/status",
    response_model=SuccessResponse,
    summary="Mining Job Status",
    description="Scheduler state and statistics of the last mining job"
)
async def get_mining_status(scheduler: MiningScheduler = Depends(get_mining_scheduler)):
    return create_success_response(
        data={
            "scheduler": scheduler.get_status(),
            "runner": scheduler.runner.get_status(),
        }
    )
