from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_current_admin
from app.models.user import User
from app.schemas.cron import (
    CronConfigResponse,
    CronJobResponse,
    CronRunResponse,
    CronValidateRequest,
    CronValidateResponse,
)
from app.services.cron_schedule import run_job, schedule_config, validate_expression
from core.db import get_db
from core.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/cron", tags=["Cron"])


@router.get("/config", response_model=CronConfigResponse)
async def get_cron_config(
    current_user: User = Depends(get_current_admin),
) -> CronConfigResponse:
    """The four dunning jobs with their expressions and enabled flags."""
    logger.info(f"Get cron config request by user: {current_user.id}")
    return CronConfigResponse(jobs=[CronJobResponse(**job) for job in schedule_config()])


@router.post("/validate", response_model=CronValidateResponse)
async def validate_cron_expression(
    data: CronValidateRequest,
    current_user: User = Depends(get_current_admin),
) -> CronValidateResponse:
    logger.info(f"Validate cron expression request by user: {current_user.id}")
    error = validate_expression(data.expression)
    return CronValidateResponse(valid=error is None, error=error)


@router.post("/run/{job_name}", response_model=CronRunResponse)
async def run_cron_job(
    job_name: str,
    db_session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_admin),
) -> CronRunResponse:
    """
    Run a dunning job now.

    A job already running elsewhere is skipped and reported as such.
    """
    logger.info(f"Manual run of {job_name} requested by user: {current_user.id}")
    report = await run_job(db_session, job_name)
    return CronRunResponse(**report)
