"""Payload building and size/content validation for TRMNL webhooks."""
import json
import math
from typing import Any, Dict

from trmnl_cli.utils import TIER_LIMITS, DEFAULT_TIER, ValidationResult

WARN_PERCENT = 90


def serialize_payload(payload: Dict[str, Any]) -> str:
    """Compact JSON text; this is both what gets measured and what gets POSTed."""
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False)


def create_payload(raw: str) -> Dict[str, Any]:
    """Turn raw user input into a webhook payload.

    A JSON object carrying ``merge_variables`` is used as-is, any other JSON
    object is wrapped in ``merge_variables``, and everything else is sent as
    the ``content`` merge variable.
    """
    try:
        parsed = json.loads(raw)
    except ValueError:
        parsed = None

    if isinstance(parsed, dict):
        if "merge_variables" in parsed:
            return parsed
        return {"merge_variables": parsed}

    return {"merge_variables": {"content": raw}}


def _is_missing(merge_variables: Any) -> bool:
    # absent, null or an empty scalar; empty objects and lists still count as present
    if isinstance(merge_variables, (dict, list)):
        return False
    return not merge_variables


def _percent(size_bytes: int, limit_bytes: int) -> float:
    # one decimal, halves rounded up
    return math.floor(size_bytes / limit_bytes * 1000 + 0.5) / 10


def validate_payload(payload: Dict[str, Any], tier: str = DEFAULT_TIER) -> ValidationResult:
    if tier not in TIER_LIMITS:
        raise ValueError(f"Unknown tier: {tier}")

    size_bytes = len(serialize_payload(payload).encode("utf-8"))
    limit_bytes = TIER_LIMITS[tier]
    percent_used = _percent(size_bytes, limit_bytes)

    warnings = []
    errors = []

    if size_bytes > limit_bytes:
        errors.append(f"Payload exceeds {tier} tier limit: {size_bytes} bytes > {limit_bytes} bytes")
    elif percent_used > WARN_PERCENT:
        warnings.append(f"Payload is at {percent_used}% of {tier} tier limit")

    merge_variables = payload.get("merge_variables")
    if _is_missing(merge_variables):
        errors.append("Missing merge_variables object")
        merge_variables = {}
    else:
        if not isinstance(merge_variables, dict):
            merge_variables = {}
        if not merge_variables.get("content") and not merge_variables.get("text"):
            warnings.append("No content or text field in merge_variables")

    content = merge_variables.get("content")
    if content and isinstance(content, str):
        # substring counts only, not an HTML parse
        open_divs = content.count("<div")
        close_divs = content.count("</div>")
        if open_divs != close_divs:
            warnings.append(f"Potential unclosed divs: {open_divs} open, {close_divs} close")

        if 'class="layout"' not in content and "class='layout'" not in content:
            warnings.append("Missing .layout class - TRMNL requires a root layout element")

    return ValidationResult(
        valid=not errors,
        size_bytes=size_bytes,
        tier=tier,
        limit_bytes=limit_bytes,
        remaining_bytes=limit_bytes - size_bytes,
        percent_used=percent_used,
        warnings=warnings,
        errors=errors,
    )
