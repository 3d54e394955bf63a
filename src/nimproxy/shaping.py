"""Reshape upstream completions into the OpenAI response envelope."""

import time
from typing import Any, Dict

from .models import ChatCompletionResponse, Choice, Message, Usage
from .utils import wrap_reasoning


def shape_completion(
    upstream: Dict[str, Any], model: str, show_reasoning: bool = False
) -> Dict[str, Any]:
    """
    Map an upstream chat completion onto the response returned to the client.

    The id and timestamp are generated locally and the model echoes what the
    client asked for. With show_reasoning, any reasoning_content is prepended
    to the message as a closed <think> block. Missing usage becomes zeros.
    """
    choices = []
    for position, choice in enumerate(upstream.get("choices") or []):
        message = choice.get("message") or {}
        content = message.get("content") or ""
        reasoning = message.get("reasoning_content")
        if show_reasoning and reasoning:
            content = wrap_reasoning(reasoning, content)

        choices.append(
            Choice(
                index=choice.get("index", position),
                message=Message(role=message.get("role") or "assistant", content=content),
                finish_reason=choice.get("finish_reason"),
            )
        )

    usage = upstream.get("usage") or {}
    now = time.time()
    response = ChatCompletionResponse(
        id=f"chatcmpl-{int(now * 1000)}",
        created=int(now),
        model=model,
        choices=choices,
        usage=Usage(
            prompt_tokens=usage.get("prompt_tokens") or 0,
            completion_tokens=usage.get("completion_tokens") or 0,
            total_tokens=usage.get("total_tokens") or 0,
        ),
    )
    return response.model_dump()
