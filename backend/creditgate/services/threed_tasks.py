from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable

from sqlalchemy.orm import Session

from creditgate.core.database import SessionLocal
from creditgate.core.errors import ChatErrorType, ModelCreditError
from creditgate.core.settings import settings
from creditgate.models.async_task import AsyncTask, AsyncTaskStatus
from creditgate.services.credit_calculator import calculate_threed_credits
from creditgate.services.credits_engine import AllowanceContext, ChargeUsageInput, ModelCreditService, UsageInput
from creditgate.services.pricing import resolve_model_pricing
from creditgate.services.runtime import ProviderError, ThreeDResult, get_runtime


logger = logging.getLogger(__name__)


class AsyncTaskErrorType:
    INVALID_PROVIDER_API_KEY = "InvalidProviderAPIKey"
    TIMEOUT = "Timeout"
    SERVER_ERROR = "ServerError"


class AsyncTaskError(Exception):
    """Error a provider declares for a task; `name` is reported as the task's error type."""

    def __init__(self, name: str, body: str | dict[str, Any]) -> None:
        super().__init__(body if isinstance(body, str) else body.get("detail", ""))
        self.name = name
        self.body = body


class OperationAbortedError(Exception):
    pass


TIMEOUT_MESSAGE = "3D generation task timed out, please try again"


def categorize_error(error: BaseException, is_aborted: bool) -> tuple[str, str]:
    """Map a job failure to (error_type, message) for the task record."""
    if isinstance(error, ProviderError) and (
        error.error_type == ChatErrorType.INVALID_PROVIDER_API_KEY or error.status == 401
    ):
        return AsyncTaskErrorType.INVALID_PROVIDER_API_KEY, "Invalid provider API key, please check your API key"

    if isinstance(error, AsyncTaskError):
        message = error.body if isinstance(error.body, str) else str(error.body.get("detail") or "")
        return error.name, message

    if isinstance(error, ModelCreditError):
        return error.code.value, error.message

    message = str(error) or ""
    if is_aborted or isinstance(error, OperationAbortedError) or "aborted" in message:
        return AsyncTaskErrorType.TIMEOUT, TIMEOUT_MESSAGE
    if isinstance(error, (asyncio.TimeoutError, TimeoutError)) or "timeout" in message.lower():
        return AsyncTaskErrorType.TIMEOUT, TIMEOUT_MESSAGE
    if isinstance(error, (ConnectionError, OSError)) or "network" in message.lower():
        return AsyncTaskErrorType.SERVER_ERROR, message or "Network error occurred during 3D generation"
    return AsyncTaskErrorType.SERVER_ERROR, message or "Unknown error occurred during 3D generation"


def _check_aborted(abort: asyncio.Event) -> None:
    if abort.is_set():
        raise OperationAbortedError("Operation was aborted")


async def _generate(task: AsyncTask, abort: asyncio.Event) -> ThreeDResult:
    runtime = get_runtime(task.provider)
    _check_aborted(abort)

    response = await runtime.create_3d_model({"model": task.model, "params": dict(task.params or {})})
    _check_aborted(abort)

    if response is None or not response.model_url:
        raise ValueError("Create 3D model response missing modelUrl")
    return response


def _asset_from(response: ThreeDResult) -> dict[str, Any]:
    asset: dict[str, Any] = {"type": "threeD", "modelUrl": response.model_url}
    if response.format:
        asset["format"] = response.format
    if response.preview_url:
        asset["previewUrl"] = response.preview_url
    if response.job_id:
        asset["jobId"] = response.job_id
    if response.usage:
        asset["modelUsage"] = response.usage
    return asset


def _mark(db: Session, task: AsyncTask, status: AsyncTaskStatus, **fields: Any) -> None:
    task.status = status
    for key, value in fields.items():
        setattr(task, key, value)
    db.commit()


async def run_threed_task(
    task_id: str,
    *,
    session_factory: Callable[[], Session] | None = None,
    timeout_s: float | None = None,
    abort: asyncio.Event | None = None,
) -> bool:
    """Run one pending 3D task to a terminal state; returns True on success.

    Credits are charged only once the provider has produced an asset, so a
    failed or timed-out task never costs anything.
    """
    factory = session_factory or SessionLocal
    timeout = float(timeout_s if timeout_s is not None else settings.async_task_timeout_s)
    abort = abort or asyncio.Event()

    db = factory()
    try:
        task = db.query(AsyncTask).filter(AsyncTask.id == task_id).first()
        if task is None:
            logger.warning("threed.task.missing task_id=%s", task_id)
            return False

        _mark(db, task, AsyncTaskStatus.PROCESSING)
        logger.info("threed.task.start task_id=%s provider=%s model=%s", task.id, task.provider, task.model)

        try:
            try:
                response = await asyncio.wait_for(_generate(task, abort), timeout=timeout)
            except asyncio.TimeoutError:
                abort.set()
                raise OperationAbortedError("Operation was aborted")

            pricing = resolve_model_pricing(db, task.provider, task.model)
            credits = calculate_threed_credits(1, pricing)
            context = AllowanceContext(
                organization_id=task.organization_id,
                user_id=task.user_id,
                required_credits=int(task.estimated_credits or 0),
            )
            ModelCreditService(db).charge(
                ChargeUsageInput(
                    user_id=task.user_id,
                    organization_id=task.organization_id,
                    credits=credits,
                    reason="threed_generation",
                    usage=UsageInput(
                        usage_type="threeD",
                        model=task.model,
                        provider=task.provider,
                        count_used=1,
                        metadata={
                            "actualCredits": credits,
                            "estimatedCredits": int(task.estimated_credits or 0),
                            "taskId": task.id,
                        },
                    ),
                ),
                context,
            )
        except Exception as e:
            db.rollback()
            error_type, message = categorize_error(e, abort.is_set())
            logger.warning(
                "threed.task.failed task_id=%s error_type=%s error=%s",
                task_id,
                error_type,
                message,
                exc_info=error_type == AsyncTaskErrorType.SERVER_ERROR,
            )
            _mark(db, task, AsyncTaskStatus.ERROR, error={"name": error_type, "body": {"detail": message}})
            return False

        _mark(db, task, AsyncTaskStatus.SUCCESS, asset=_asset_from(response), credits_charged=credits, error=None)
        logger.info("threed.task.ok task_id=%s credits=%s", task_id, credits)
        return True
    finally:
        db.close()
