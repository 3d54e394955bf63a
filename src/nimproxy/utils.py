"""Utility functions for the NIM proxy."""

import json
import logging
from typing import Any, Dict, List

from fastapi import Response

from .models import ErrorDetail, ErrorResponse

logger = logging.getLogger(__name__)

THINK_OPEN = "<think>\n"
THINK_CLOSE = "</think>\n\n"


def resolve_model(
    name: Any,
    mapping: Dict[str, str],
    rules: List[Dict[str, Any]],
    default_model: str,
) -> str:
    """
    Resolve a client-facing model name to a NIM model id.

    Args:
        name: Model requested by the client; empty, None or non-string
            values are treated as ""
        mapping: Exact client name -> NIM id table
        rules: Ordered fallback rules, each {"match": [substrings], "model": id}
        default_model: Used when neither the table nor any rule matches

    Returns:
        The NIM model id. Resolution never fails.
    """
    if not isinstance(name, str):
        name = ""
    if name and name in mapping:
        return mapping[name]

    model_lower = name.lower()
    for rule in rules:
        if any(needle in model_lower for needle in rule.get("match", [])):
            logger.info(f"Model {name!r} not mapped, fallback rule picked {rule['model']}")
            return rule["model"]

    logger.info(f"Model {name!r} not mapped, using default {default_model}")
    return default_model


def wrap_reasoning(reasoning: str, content: str) -> str:
    """Prefix content with a closed <think> block holding the reasoning text."""
    return f"{THINK_OPEN}{reasoning}\n{THINK_CLOSE}{content}"


def error_envelope(message: str, status_code: int = 500) -> Dict[str, Any]:
    """The {"error": {...}} body shared by local and upstream failures."""
    return ErrorResponse(error=ErrorDetail(message=message, code=status_code)).model_dump()


def error_response(message: str, status_code: int = 500) -> Response:
    return Response(
        content=json.dumps(error_envelope(message, status_code)),
        status_code=status_code,
        media_type="application/json",
    )
