from __future__ import annotations

import math
from typing import Any, Iterable, Mapping

DEFAULT_TEXT_CREDITS = 1
DEFAULT_IMAGE_CREDITS_PER_IMAGE = 5
DEFAULT_THREED_CREDITS_PER_MODEL = 10

CHARS_PER_TOKEN = 4
MESSAGE_OVERHEAD_TOKENS = 4
DEFAULT_MAX_OUTPUT_TOKENS = 1024

_UNIT_DIVISORS: dict[str, float] = {
    "millionTokens": 1_000_000.0,
    "thousandTokens": 1_000.0,
}


def _is_number(v: Any) -> bool:
    return isinstance(v, (int, float)) and not isinstance(v, bool)


def _first_number(*values: Any) -> float | None:
    for v in values:
        if _is_number(v):
            return float(v)
    return None


def resolve_unit_divisor(unit: str | None) -> float:
    return _UNIT_DIVISORS.get(unit or "", 1.0)


def resolve_unit_rate(unit: Mapping[str, Any]) -> float | None:
    """Per-unit rate of a pricing unit; tiered units use their first tier."""
    strategy = unit.get("strategy")
    if strategy == "fixed":
        rate = unit.get("rate")
        return float(rate) if _is_number(rate) else None
    if strategy == "tiered":
        tiers = unit.get("tiers") or []
        if not tiers or not isinstance(tiers[0], Mapping):
            return None
        rate = tiers[0].get("rate")
        return float(rate) if _is_number(rate) else None
    return None


def compute_credits_with_units(pricing: Mapping[str, Any] | None, quantities: Mapping[str, float]) -> int:
    """Sum quantity / divisor * rate over matching pricing units, rounded up."""
    units: Iterable[Any] = (pricing or {}).get("units") or []
    total = 0.0
    for unit in units:
        if not isinstance(unit, Mapping):
            continue
        quantity = quantities.get(unit.get("name") or "")
        if not quantity or quantity <= 0:
            continue
        rate = resolve_unit_rate(unit)
        if rate is None:
            continue
        total += (float(quantity) / resolve_unit_divisor(unit.get("unit"))) * rate
    # float noise such as 6.000000000000001 must not round up to 7
    return int(math.ceil(round(total, 9)))


def _message_text(content: Any) -> str:
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, Mapping) and isinstance(part.get("text"), str):
                parts.append(part["text"])
            elif isinstance(part, str):
                parts.append(part)
        return "".join(parts)
    return str(content)


def estimate_tokens_from_messages(messages: Iterable[Mapping[str, Any]] | None) -> int:
    messages = list(messages or [])
    chars = sum(len(_message_text(m.get("content"))) for m in messages if isinstance(m, Mapping))
    return int(math.ceil(chars / CHARS_PER_TOKEN)) + MESSAGE_OVERHEAD_TOKENS * len(messages)


def estimate_text_credits(payload: Mapping[str, Any], pricing: Mapping[str, Any] | None) -> int:
    """Pre-call estimate for a chat payload; falls back to a minimal charge when nothing is priced."""
    input_tokens = estimate_tokens_from_messages(payload.get("messages"))
    max_tokens = payload.get("max_tokens")
    output_tokens = int(max_tokens) if _is_number(max_tokens) and max_tokens > 0 else DEFAULT_MAX_OUTPUT_TOKENS

    credits = compute_credits_with_units(
        pricing,
        {"textInput": input_tokens, "textOutput": output_tokens},
    )
    return credits if credits > 0 else DEFAULT_TEXT_CREDITS


def calculate_text_credits_from_usage(usage: Mapping[str, Any] | None, pricing: Mapping[str, Any] | None) -> int:
    """Actual cost from provider-reported usage.

    Recognised keys: input_cached_tokens, input_write_cache_tokens, input_cache_miss_tokens,
    total_input_tokens, input_text_tokens, total_output_tokens, output_text_tokens, total_tokens.
    """
    if not usage:
        return DEFAULT_TEXT_CREDITS

    cached = _first_number(usage.get("input_cached_tokens")) or 0.0
    cache_write = _first_number(usage.get("input_write_cache_tokens")) or 0.0
    total_input = _first_number(
        usage.get("total_input_tokens"),
        usage.get("input_text_tokens"),
    )
    cache_miss = _first_number(usage.get("input_cache_miss_tokens"))
    if cache_miss is None:
        cache_miss = max(0.0, (total_input or 0.0) - cached)

    output = _first_number(usage.get("total_output_tokens"), usage.get("output_text_tokens"))
    if output is None:
        total = _first_number(usage.get("total_tokens"))
        output = max(0.0, (total or 0.0) - (total_input or 0.0))

    credits = compute_credits_with_units(
        pricing,
        {
            "textInput": cache_miss,
            "textInput_cacheRead": cached,
            "textInput_cacheWrite": cache_write,
            "textOutput": output,
        },
    )
    return credits if credits > 0 else DEFAULT_TEXT_CREDITS


def calculate_image_credits(count: int, pricing: Mapping[str, Any] | None) -> int:
    count = int(count or 0)
    credits = compute_credits_with_units(
        pricing,
        {"imageGeneration": count, "imageOutput": count, "request": count},
    )
    return credits if credits > 0 else max(count, 1) * DEFAULT_IMAGE_CREDITS_PER_IMAGE


def calculate_threed_credits(count: int, pricing: Mapping[str, Any] | None) -> int:
    count = int(count or 0)
    credits = compute_credits_with_units(
        pricing,
        {"request": count, "threeDGeneration": count},
    )
    return credits if credits > 0 else max(count, 1) * DEFAULT_THREED_CREDITS_PER_MODEL
