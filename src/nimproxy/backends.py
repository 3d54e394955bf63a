"""Backend handling for the NIM proxy."""

import json
import logging
import httpx
from typing import Dict, Any, Optional

from .config import relay_logger
from .models import ChatCompletionRequest
from .utils import error_envelope

logger = logging.getLogger(__name__)


def build_upstream_request(
    request: ChatCompletionRequest,
    nim_model: str,
    default_temperature: float,
    default_max_tokens: int,
    thinking_mode: bool = False,
) -> Dict[str, Any]:
    """
    Translate a client chat completion request into the NIM request body.

    Messages are copied verbatim; temperature and max_tokens fall back to the
    configured defaults when absent or null.
    """
    payload = {
        "model": nim_model,
        "messages": request.messages,
        "temperature": (
            request.temperature
            if request.temperature is not None
            else default_temperature
        ),
        "max_tokens": (
            request.max_tokens
            if request.max_tokens is not None
            else default_max_tokens
        ),
        "stream": bool(request.stream),
    }
    if thinking_mode:
        payload["chat_template_kwargs"] = {"thinking": True}
    return payload


def build_headers(api_key: str, inbound_headers: Dict[str, str]) -> Optional[Dict[str, str]]:
    """
    Headers for the upstream call. The configured key wins; otherwise the
    client's Authorization header is forwarded. Returns None if neither exists.
    """
    if api_key:
        authorization = f"Bearer {api_key}"
    else:
        authorization = inbound_headers.get("authorization") or inbound_headers.get(
            "Authorization"
        )
        if not authorization:
            return None
    return {"Authorization": authorization, "Content-Type": "application/json"}


def upstream_error_message(content: bytes, status_code: int) -> str:
    """Pull the most useful message out of an upstream error body."""
    text = content.decode("utf-8", errors="replace") if isinstance(content, bytes) else str(content)
    try:
        body = json.loads(text)
    except json.JSONDecodeError:
        return text.strip() or f"Upstream returned HTTP {status_code}"

    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str) and error:
            return error
        for key in ("detail", "message", "title"):
            if body.get(key):
                return str(body[key])
    return text.strip() or f"Upstream returned HTTP {status_code}"


def _error_result(status_code: int, message: str) -> Dict[str, Any]:
    return {
        "status_code": status_code,
        "content": error_envelope(message, status_code),
        "is_stream": False,
    }


async def call_backend(
    backend: Dict[str, str],
    payload: Dict[str, Any],
    headers: Dict[str, str],
    timeout: float,
) -> Dict[str, Any]:
    """
    Send one chat completion request upstream and return the outcome.

    Args:
        backend: Dictionary containing backend configuration (name, url)
        payload: Translated request body
        headers: Outbound headers, including the bearer token
        timeout: Request timeout in seconds

    Returns:
        Dictionary with status_code, content and is_stream. For a successful
        streaming call, content is the still-open httpx response and "client"
        holds the client that must be closed once the stream is consumed.
        Failures carry the error envelope as content.
    """
    target_url = f"{backend['url']}/chat/completions"
    is_stream = bool(payload.get("stream"))
    relay_logger.info(
        f"Calling backend {backend['name']} at {target_url} "
        f"with model {payload.get('model')} (stream={is_stream})"
    )

    client = httpx.AsyncClient(timeout=timeout)
    keep_open = False
    try:
        request = client.build_request("POST", target_url, json=payload, headers=headers)
        response = await client.send(request, stream=is_stream)

        if not 200 <= response.status_code < 300:
            content = await response.aread()
            await response.aclose()
            message = upstream_error_message(content, response.status_code)
            relay_logger.error(
                f"Backend {backend['name']} returned {response.status_code}: {message}"
            )
            return _error_result(response.status_code, message)

        if is_stream:
            keep_open = True
            return {
                "status_code": response.status_code,
                "content": response,
                "client": client,
                "is_stream": True,
            }

        content = await response.aread()
        try:
            json_content = json.loads(content)
        except json.JSONDecodeError:
            logger.error(f"Backend {backend['name']} returned a non-JSON body")
            return _error_result(500, "Upstream returned invalid JSON")
        if not isinstance(json_content, dict):
            logger.error(
                f"Backend {backend['name']} returned a JSON {type(json_content).__name__}, "
                "expected an object"
            )
            return _error_result(500, "Upstream returned an unexpected response body")
        return {
            "status_code": response.status_code,
            "content": json_content,
            "is_stream": False,
        }

    except httpx.HTTPError as e:
        logger.error(f"Error calling backend {backend['name']}: {str(e)}")
        return _error_result(500, str(e) or e.__class__.__name__)
    finally:
        if not keep_open:
            await client.aclose()
