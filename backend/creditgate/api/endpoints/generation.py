from __future__ import annotations

import logging

from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.orm import Session

from creditgate.core.database import get_db, session_factory_for
from creditgate.core.errors import ModelCreditError, create_credit_error_response, create_error_response, create_not_found_error
from creditgate.core.security import CurrentUser, get_current_user
from creditgate.models.async_task import AsyncTask, AsyncTaskStatus, AsyncTaskType
from creditgate.schemas.generation import (
    AsyncTaskOut,
    ChatRequest,
    ChatResponse,
    TextToImageRequest,
    TextToImageResponse,
    ThreeDRequest,
    ThreeDTaskCreated,
)
from creditgate.services.credit_calculator import (
    calculate_image_credits,
    calculate_text_credits_from_usage,
    calculate_threed_credits,
    estimate_text_credits,
)
from creditgate.services.credits_engine import ChargeUsageInput, ModelCreditService, UsageInput
from creditgate.services.pricing import resolve_model_pricing
from creditgate.services.runtime import ProviderError, get_runtime
from creditgate.services.threed_tasks import run_threed_task


logger = logging.getLogger(__name__)

router = APIRouter()


def _provider_error_response(error: ProviderError, provider: str):
    logger.warning("generation.provider_error provider=%s type=%s status=%s", provider, error.error_type, error.status)
    body = {"error": {"message": error.message, "status": error.status, "detail": error.body}, "provider": provider}
    return create_error_response(error.error_type, body)


@router.post("/chat/{provider}", response_model=ChatResponse)
async def chat_completion(
    provider: str,
    body: ChatRequest,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    payload = body.model_dump(exclude_none=True)
    credits_service = ModelCreditService(db)

    pricing = resolve_model_pricing(db, provider, body.model)
    estimated = estimate_text_credits(payload, pricing)
    try:
        allowance = credits_service.ensure_allowance(current_user.id, estimated)
    except ModelCreditError as e:
        return create_credit_error_response(e, provider)

    try:
        result = await get_runtime(provider).chat(payload, user=current_user.id)
    except ProviderError as e:
        return _provider_error_response(e, provider)

    actual = calculate_text_credits_from_usage(result.usage, pricing) if result.usage else estimated
    usage = result.usage or {}
    try:
        credits_service.charge(
            ChargeUsageInput(
                user_id=current_user.id,
                organization_id=allowance.organization_id,
                credits=actual,
                reason="chat_completion",
                usage=UsageInput(
                    usage_type="text",
                    model=body.model,
                    provider=provider,
                    input_tokens=usage.get("total_input_tokens"),
                    output_tokens=usage.get("total_output_tokens"),
                    total_tokens=usage.get("total_tokens"),
                    metadata={"estimatedCredits": estimated, "actualCredits": actual, "usage": result.usage},
                ),
            ),
            allowance,
        )
    except ModelCreditError as e:
        return create_credit_error_response(e, provider)

    return ChatResponse(content=result.content, model=result.model or body.model, credits=actual, usage=result.usage)


@router.post("/text-to-image/{provider}", response_model=TextToImageResponse)
async def text_to_image(
    provider: str,
    body: TextToImageRequest,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    credits_service = ModelCreditService(db)

    pricing = resolve_model_pricing(db, provider, body.model)
    requested = int(body.n or 1)
    estimated = calculate_image_credits(requested, pricing)
    try:
        allowance = credits_service.ensure_allowance(current_user.id, estimated)
    except ModelCreditError as e:
        return create_credit_error_response(e, provider)

    try:
        images = await get_runtime(provider).text_to_image(body.model_dump(exclude_none=True))
    except ProviderError as e:
        return _provider_error_response(e, provider)

    actual_count = len(images) if isinstance(images, list) else requested
    actual = calculate_image_credits(actual_count, pricing)
    try:
        credits_service.charge(
            ChargeUsageInput(
                user_id=current_user.id,
                organization_id=allowance.organization_id,
                credits=actual,
                reason="image_generation",
                usage=UsageInput(
                    usage_type="image",
                    model=body.model,
                    provider=provider,
                    count_used=actual_count,
                    metadata={"estimatedCredits": estimated, "actualCredits": actual},
                ),
            ),
            allowance,
        )
    except ModelCreditError as e:
        return create_credit_error_response(e, provider)

    return TextToImageResponse(images=images, credits=actual)


@router.post("/threed/{provider}", response_model=ThreeDTaskCreated, status_code=202)
async def create_threed_task(
    provider: str,
    body: ThreeDRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    pricing = resolve_model_pricing(db, provider, body.model)
    estimated = calculate_threed_credits(1, pricing)
    try:
        allowance = ModelCreditService(db).ensure_allowance(current_user.id, estimated)
    except ModelCreditError as e:
        return create_credit_error_response(e, provider)

    task = AsyncTask(
        user_id=current_user.id,
        organization_id=allowance.organization_id,
        type=AsyncTaskType.THREED_GENERATION,
        status=AsyncTaskStatus.PENDING,
        provider=provider,
        model=body.model,
        params=body.params or {},
        estimated_credits=estimated,
    )
    db.add(task)
    db.commit()
    db.refresh(task)

    background_tasks.add_task(run_threed_task, task.id, session_factory=session_factory_for(db))
    logger.info("threed.task.queued task_id=%s provider=%s model=%s", task.id, provider, body.model)
    return ThreeDTaskCreated(task_id=task.id, status=task.status, estimated_credits=estimated)


@router.get("/threed/tasks/{task_id}", response_model=AsyncTaskOut)
async def get_threed_task(
    task_id: str,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    task = db.query(AsyncTask).filter(AsyncTask.id == task_id, AsyncTask.user_id == current_user.id).first()
    if task is None:
        raise create_not_found_error("Task")
    return task
