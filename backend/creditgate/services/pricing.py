from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.orm import Session

from creditgate.core.settings import settings
from creditgate.models.ai_model import AiModel
from creditgate.services.cache import TTLCache


logger = logging.getLogger(__name__)

# An empty dict marks a cached miss so unknown models don't hit the catalog on every request.
_PRICING_CACHE = TTLCache(max_items=2000, ttl_s=settings.pricing_cache_ttl_s)


def _cache_key(provider_id: str, model_id: str) -> str:
    return f"pricing:{provider_id}:{model_id}"


def clear_pricing_cache() -> None:
    _PRICING_CACHE.clear()


def resolve_model_pricing(db: Session, provider_id: str, model_id: str) -> dict[str, Any] | None:
    """Price schedule for provider+model, or None when unknown or the lookup fails."""
    key = _cache_key(provider_id, model_id)
    cached = _PRICING_CACHE.get(key)
    if cached is not None:
        return cached or None

    try:
        row = (
            db.query(AiModel)
            .filter(AiModel.provider_id == provider_id, AiModel.model_id == model_id, AiModel.enabled.is_(True))
            .first()
        )
    except Exception:
        logger.warning("pricing.resolve.failed provider=%s model=%s", provider_id, model_id, exc_info=True)
        db.rollback()
        return None

    pricing = row.pricing if row is not None and isinstance(row.pricing, dict) else None
    if pricing is None:
        logger.info("pricing.resolve.miss provider=%s model=%s", provider_id, model_id)
    _PRICING_CACHE.set(key, pricing or {})
    return pricing or None
