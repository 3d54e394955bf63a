"""FastAPI application and routes for the NIM proxy."""

import json
import logging
import time
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse, StreamingResponse
from pydantic import ValidationError

from .config import (
    MODEL_MAPPING,
    FALLBACK_RULES,
    DEFAULT_MODEL,
    DEFAULT_TEMPERATURE,
    DEFAULT_MAX_TOKENS,
    SHOW_REASONING,
    ENABLE_THINKING_MODE,
    REFRAME_STREAM,
    NIM_API_BASE,
    NIM_API_KEY,
    TIMEOUT,
    PORT,
)
from .backends import build_headers, build_upstream_request, call_backend
from .models import ChatCompletionRequest, ModelCard, ModelList
from .shaping import shape_completion
from .streaming import STREAM_HEADERS, relay_stream
from .utils import error_response, resolve_model

logger = logging.getLogger(__name__)

app = FastAPI(title="NIM Proxy")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

backend = {"name": "nim", "url": NIM_API_BASE}


@app.get("/")
async def banner():
    return PlainTextResponse("NVIDIA NIM OpenAI-compatible proxy is running")


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "ok",
        "service": "OpenAI → NVIDIA NIM Proxy",
        "reasoning_display": SHOW_REASONING,
        "thinking_mode": ENABLE_THINKING_MODE,
    }


@app.get("/v1")
async def api_root():
    return {"object": "api", "status": "ok"}


@app.get("/v1/models")
async def list_models():
    """List the client-facing model names as OpenAI model objects."""
    created = int(time.time())
    models = ModelList(
        data=[ModelCard(id=name, created=created) for name in MODEL_MAPPING]
    )
    return models.model_dump()


@app.post("/v1/chat/completions")
async def proxy_chat_completions(request: Request) -> Response:
    """
    Chat completions relay:
    - Resolves the client model to a NIM model
    - Forwards the request with the configured bearer token
    - Reshapes the JSON reply, or re-frames the SSE stream
    """
    body = await request.body()
    try:
        chat_request = ChatCompletionRequest.model_validate(json.loads(body))
    except ValidationError as e:
        message = f"Invalid request body: {e.errors()[0]['msg']}"
        logger.warning(f"Rejected chat completion: {message}")
        return error_response(message, 400)
    except ValueError:
        logger.warning("Rejected chat completion: body is not valid JSON")
        return error_response("Invalid JSON", 400)

    headers = build_headers(NIM_API_KEY, dict(request.headers))
    if headers is None:
        logger.warning("Rejected chat completion: no upstream credentials")
        return error_response(
            "NIM_API_KEY is not set and no Authorization header was provided", 401
        )

    client_model = chat_request.model if isinstance(chat_request.model, str) else ""
    nim_model = resolve_model(client_model, MODEL_MAPPING, FALLBACK_RULES, DEFAULT_MODEL)
    payload = build_upstream_request(
        chat_request,
        nim_model,
        DEFAULT_TEMPERATURE,
        DEFAULT_MAX_TOKENS,
        thinking_mode=ENABLE_THINKING_MODE,
    )
    logger.info(f"Relaying {client_model!r} as {nim_model}")

    response = await call_backend(backend, payload, headers, TIMEOUT)
    if response["status_code"] >= 300:
        return Response(
            content=json.dumps(response["content"]),
            status_code=response["status_code"],
            media_type="application/json",
        )

    if response["is_stream"]:
        return StreamingResponse(
            relay_stream(
                response["content"],
                response.get("client"),
                show_reasoning=SHOW_REASONING,
                reframe=REFRAME_STREAM,
            ),
            media_type="text/event-stream",
            headers=STREAM_HEADERS,
        )

    return Response(
        content=json.dumps(
            shape_completion(
                response["content"],
                client_model or nim_model,
                show_reasoning=SHOW_REASONING,
            )
        ),
        status_code=200,
        media_type="application/json",
    )


@app.api_route(
    "/{path:path}",
    methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS", "HEAD"],
)
async def not_found(request: Request, path: str):
    logger.warning(f"No route for {request.method} {request.url.path}")
    return error_response(f"Endpoint {request.url.path} not found", 404)


def main():
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=PORT)


if __name__ == "__main__":
    main()
