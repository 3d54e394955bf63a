"""Streaming response handling for the NIM proxy."""

import json
import logging
from typing import AsyncGenerator, Dict, Any, List, Optional
import httpx

from .config import relay_logger
from .utils import THINK_OPEN, THINK_CLOSE

logger = logging.getLogger(__name__)

DATA_PREFIX = "data:"
DONE_MARKER = "[DONE]"

STREAM_HEADERS: Dict[str, str] = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}


class SSEReframer:
    """
    Reassembles upstream SSE text into complete "data:" lines and rewrites each
    event for the client. Network chunks may end mid-line, so the trailing
    fragment of every feed is held back until the next one completes it.

    With show_reasoning enabled, reasoning_content is folded into content and
    wrapped in <think> tags; the open tag is emitted once per reasoning run and
    the close tag is prepended to the first ordinary content that follows.
    """

    def __init__(self, show_reasoning: bool = False):
        self.show_reasoning = show_reasoning
        self.buffer = ""
        self.reasoning_open = False

    def feed(self, text: str) -> List[str]:
        """
        Add new text and return the frames for every line it completes.
        """
        self.buffer += text
        lines = self.buffer.split("\n")
        self.buffer = lines.pop()

        frames = []
        for line in lines:
            frame = self.process_line(line)
            if frame is not None:
                frames.append(frame)
        return frames

    def flush(self) -> List[str]:
        """
        Process whatever is left once the upstream has finished.
        """
        remainder, self.buffer = self.buffer, ""
        if not remainder:
            return []
        frame = self.process_line(remainder)
        return [frame] if frame is not None else []

    def process_line(self, line: str) -> Optional[str]:
        line = line.rstrip("\r")
        if not line.startswith(DATA_PREFIX):
            return None

        payload = line[len(DATA_PREFIX):]
        if payload.startswith(" "):
            payload = payload[1:]

        if payload.strip() == DONE_MARKER:
            return line + "\n\n"

        try:
            event = json.loads(payload)
        except json.JSONDecodeError:
            relay_logger.warning(f"Forwarding malformed stream line as-is: {line[:200]}")
            return line + "\n\n"

        self.rewrite_event(event)
        return f"data: {json.dumps(event)}\n\n"

    def rewrite_event(self, event: Any) -> None:
        if not isinstance(event, dict):
            return
        choices = event.get("choices")
        if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
            return
        delta = choices[0].get("delta")
        if not isinstance(delta, dict):
            return

        reasoning = delta.pop("reasoning_content", None)
        if not self.show_reasoning:
            return

        content = delta.get("content")
        combined = ""
        if reasoning:
            combined = reasoning if self.reasoning_open else THINK_OPEN + reasoning
            self.reasoning_open = True
        if content:
            if self.reasoning_open:
                combined += THINK_CLOSE
                self.reasoning_open = False
            combined += content
        if combined:
            delta["content"] = combined


async def relay_stream(
    upstream: httpx.Response,
    client: Optional[httpx.AsyncClient] = None,
    show_reasoning: bool = False,
    reframe: bool = True,
) -> AsyncGenerator[bytes, None]:
    """
    Relay an upstream SSE response to the client.

    A fresh SSEReframer is used per call, so concurrent streams never share
    state. With reframe disabled the upstream bytes pass through untouched.
    Upstream errors end the stream quietly after being logged; the upstream
    response and its client are always closed.
    """
    reframer = SSEReframer(show_reasoning=show_reasoning)
    frames_sent = 0
    try:
        if not reframe:
            async for chunk in upstream.aiter_bytes():
                yield chunk
            return

        async for text in upstream.aiter_text():
            for frame in reframer.feed(text):
                frames_sent += 1
                yield frame.encode()
        for frame in reframer.flush():
            frames_sent += 1
            yield frame.encode()
        relay_logger.info(f"Stream finished after {frames_sent} frames")
    except httpx.HTTPError as e:
        relay_logger.error(f"Upstream stream error after {frames_sent} frames: {str(e)}")
    finally:
        await upstream.aclose()
        if client is not None:
            await client.aclose()
