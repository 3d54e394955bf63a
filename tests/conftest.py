import pytest
from fastapi.testclient import TestClient
import json
import yaml
import httpx
import importlib
from pathlib import Path

# Mock response payloads
MOCK_COMPLETION_RESPONSE = {
    "id": "cmpl-nim-123",
    "object": "chat.completion",
    "created": 1677652288,
    "model": "qwen/qwen3-coder-480b-a35b-instruct",
    "choices": [
        {
            "index": 0,
            "message": {
                "role": "assistant",
                "content": "Hello there, how may I assist you today?",
                "reasoning_content": "The user greeted me.",
            },
            "finish_reason": "stop",
        }
    ],
    "usage": {"prompt_tokens": 9, "completion_tokens": 12, "total_tokens": 21},
}

MOCK_COMPLETION_NO_USAGE = {
    "id": "cmpl-nim-456",
    "object": "chat.completion",
    "created": 1677652288,
    "model": "meta/llama-3.1-8b-instruct",
    "choices": [
        {
            "index": 0,
            "message": {"role": "assistant", "content": "Hi!"},
            "finish_reason": "stop",
        }
    ],
}

MOCK_STREAMING_CHUNKS = [
    {
        "id": "chatcmpl-123",
        "object": "chat.completion.chunk",
        "created": 1694268190,
        "model": "qwen/qwen3-next-80b-a3b-thinking",
        "choices": [
            {
                "index": 0,
                "delta": {"role": "assistant", "reasoning_content": "Let me think"},
                "finish_reason": None,
            }
        ],
    },
    {
        "id": "chatcmpl-123",
        "object": "chat.completion.chunk",
        "created": 1694268190,
        "model": "qwen/qwen3-next-80b-a3b-thinking",
        "choices": [
            {
                "index": 0,
                "delta": {"reasoning_content": " about it."},
                "finish_reason": None,
            }
        ],
    },
    {
        "id": "chatcmpl-123",
        "object": "chat.completion.chunk",
        "created": 1694268190,
        "model": "qwen/qwen3-next-80b-a3b-thinking",
        "choices": [
            {"index": 0, "delta": {"content": "Hello"}, "finish_reason": None}
        ],
    },
    {
        "id": "chatcmpl-123",
        "object": "chat.completion.chunk",
        "created": 1694268190,
        "model": "qwen/qwen3-next-80b-a3b-thinking",
        "choices": [{"index": 0, "delta": {}, "finish_reason": "stop"}],
    },
]

MOCK_MAPPING = {
    "gpt-4": "qwen/qwen3-coder-480b-a35b-instruct",
    "gemini-pro": "qwen/qwen3-next-80b-a3b-thinking",
}

# Mock configurations
MOCK_CONFIG = {
    "upstream": {"url": "http://nim.example.com/v1"},
    "model_mapping": MOCK_MAPPING,
    "defaults": {"temperature": 0.6, "max_tokens": 9024},
    "reasoning": {"show_reasoning": False, "thinking_mode": False},
    "settings": {"timeout": 30},
}

MOCK_CONFIG_REASONING = {
    **MOCK_CONFIG,
    "defaults": {"temperature": 0.2, "max_tokens": 1024},
    "reasoning": {"show_reasoning": True, "thinking_mode": True},
}

MOCK_CONFIG_PASSTHROUGH = {
    **MOCK_CONFIG,
    "settings": {"timeout": 30, "reframe_stream": False},
}


def sse_body(events):
    """Serialize events the way the upstream sends them, ending with [DONE]."""
    body = "".join(f"data: {json.dumps(event)}\n\n" for event in events)
    return body + "data: [DONE]\n\n"


def split_every(text, size):
    return [text[i : i + size] for i in range(0, len(text), size)]


def mock_stream_response(chunks, error=None):
    """Upstream SSE response delivering the given text chunks one by one."""

    async def body():
        for chunk in chunks:
            yield chunk.encode()
        if error is not None:
            raise error

    return httpx.Response(
        200, headers={"content-type": "text/event-stream"}, content=body()
    )


class UpstreamRecorder:
    """Replacement for httpx.AsyncClient.send that records outgoing requests"""

    def __init__(self, response=None, exception=None):
        self.response = response
        self.exception = exception
        self.requests = []
        self.stream_flags = []

    async def __call__(self, request, **kwargs):
        self.requests.append(request)
        self.stream_flags.append(kwargs.get("stream", False))
        if self.exception is not None:
            raise self.exception
        return self.response

    @property
    def last_payload(self):
        return json.loads(self.requests[-1].content)


def reload_proxy(monkeypatch, mock_config):
    """Reload the package against the given config.yaml contents."""

    def mock_read_text(*args, **kwargs):
        return yaml.dump(mock_config, sort_keys=False)

    monkeypatch.setattr(Path, "read_text", mock_read_text)
    monkeypatch.setenv("NIM_API_KEY", "test-nim-key")
    monkeypatch.delenv("NIM_API_BASE", raising=False)

    import nimproxy.config
    import nimproxy.utils
    import nimproxy.backends
    import nimproxy.streaming
    import nimproxy.shaping
    import nimproxy.api

    for module in (
        nimproxy.config,
        nimproxy.utils,
        nimproxy.backends,
        nimproxy.streaming,
        nimproxy.shaping,
        nimproxy.api,
    ):
        importlib.reload(module)
    return nimproxy.api


# Shared fixtures
@pytest.fixture
def mock_upstream(monkeypatch):
    """Install an UpstreamRecorder; tests set .response or .exception"""
    recorder = UpstreamRecorder()
    monkeypatch.setattr(httpx.AsyncClient, "send", recorder)
    return recorder


@pytest.fixture
def proxy_api(monkeypatch):
    return reload_proxy(monkeypatch, MOCK_CONFIG)


@pytest.fixture
def test_client(proxy_api):
    """Create a test client with reasoning display off"""
    return TestClient(proxy_api.app)


@pytest.fixture
def test_client_reasoning(monkeypatch):
    """Create a test client with reasoning display and thinking mode on"""
    api = reload_proxy(monkeypatch, MOCK_CONFIG_REASONING)
    return TestClient(api.app)


@pytest.fixture
def test_client_passthrough(monkeypatch):
    """Create a test client that relays upstream SSE bytes untouched"""
    api = reload_proxy(monkeypatch, MOCK_CONFIG_PASSTHROUGH)
    return TestClient(api.app)
