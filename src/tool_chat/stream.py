"""
Decoding of the streamed chat completion protocol.

Two stages: ``SSEDecoder`` turns raw byte chunks into JSON payloads, and
``DeltaAccumulator`` folds those payloads into assistant text plus the tool
calls the model is building up.
"""

import codecs
import json
import logging
import time
from typing import Any, AsyncIterable, AsyncIterator, Callable, Dict, Iterator, List, Optional

from .errors import StreamDecodeError
from .messages import ToolCallRecord

logger = logging.getLogger(__name__)

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"


class SSEDecoder:
    """Incremental decoder for ``data:``-prefixed server-sent-event lines.

    Chunks may split a line (or a multi-byte character) anywhere; the
    incomplete tail is buffered until the next ``feed`` or ``flush``.
    """

    def __init__(self):
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self.done = False

    def feed(self, chunk: bytes) -> Iterator[Dict[str, Any]]:
        """Yield every payload completed by ``chunk``."""
        if self.done:
            return
        self._buffer += self._decoder.decode(chunk)
        while not self.done:
            newline = self._buffer.find("\n")
            if newline == -1:
                break
            line = self._buffer[:newline]
            self._buffer = self._buffer[newline + 1 :]
            payload = self._decode_line(line)
            if payload is not None:
                yield payload

    def flush(self) -> Iterator[Dict[str, Any]]:
        """Decode whatever is left once the byte stream has ended."""
        if self.done:
            return
        self._buffer += self._decoder.decode(b"", final=True)
        line, self._buffer = self._buffer, ""
        payload = self._decode_line(line)
        if payload is not None:
            yield payload

    def _decode_line(self, line: str) -> Optional[Dict[str, Any]]:
        line = line.strip()
        if not line.startswith(DATA_PREFIX):
            return None  # blank separator, comment or keepalive
        data = line[len(DATA_PREFIX) :].strip()
        if data == DONE_SENTINEL:
            self.done = True
            return None
        try:
            return _parse_payload(data)
        except StreamDecodeError as e:
            logger.debug(f"STREAM: skipping undecodable line: {e}")
            return None


def _parse_payload(data: str) -> Dict[str, Any]:
    try:
        payload = json.loads(data)
    except json.JSONDecodeError as e:
        raise StreamDecodeError(f"{e}: {data[:80]!r}") from e
    if not isinstance(payload, dict):
        raise StreamDecodeError(f"expected a JSON object, got {type(payload).__name__}")
    return payload


async def iter_events(chunks: AsyncIterable[bytes]) -> AsyncIterator[Dict[str, Any]]:
    """Decode an async byte stream into payloads, stopping at the sentinel."""
    decoder = SSEDecoder()
    async for chunk in chunks:
        for payload in decoder.feed(chunk):
            yield payload
        if decoder.done:
            return
    for payload in decoder.flush():
        yield payload


class _ToolCallBuilder:
    __slots__ = ("id", "name", "arguments")

    def __init__(self, call_id: str):
        self.id = call_id
        self.name = ""
        self.arguments = ""


class DeltaAccumulator:
    """Fold streamed deltas into ``(text, tool_calls)``.

    Tool calls are keyed by their ``index`` in the delta, so fragments that
    omit the id still land on the right record. ``on_text`` is invoked with
    each text fragment as it arrives.
    """

    def __init__(
        self,
        on_text: Optional[Callable[[str], None]] = None,
        id_seed: Optional[str] = None,
    ):
        self.on_text = on_text
        self.id_seed = id_seed or str(int(time.time() * 1000))
        self._text_parts: List[str] = []
        self._builders: Dict[int, _ToolCallBuilder] = {}

    @property
    def text(self) -> str:
        return "".join(self._text_parts)

    def feed(self, payload: Dict[str, Any]) -> None:
        choices = payload.get("choices") or []
        if not choices or not isinstance(choices[0], dict):
            return
        delta = choices[0].get("delta") or {}

        content = delta.get("content")
        if content:
            self._text_parts.append(content)
            if self.on_text:
                self.on_text(content)

        for fragment in delta.get("tool_calls") or []:
            self._fold_tool_call(fragment)

    def _fold_tool_call(self, fragment: Dict[str, Any]) -> None:
        index = fragment.get("index") or 0
        builder = self._builders.get(index)
        if builder is None:
            builder = _ToolCallBuilder(f"call_{index}_{self.id_seed}")
            self._builders[index] = builder

        if fragment.get("id"):
            builder.id = fragment["id"]
        function = fragment.get("function") or {}
        if function.get("name"):
            builder.name = function["name"]
        if function.get("arguments"):
            builder.arguments += function["arguments"]

    def tool_calls(self) -> List[ToolCallRecord]:
        """Completed records ordered by index."""
        return [
            ToolCallRecord(id=b.id, name=b.name, arguments=b.arguments)
            for _, b in sorted(self._builders.items())
        ]

    def result(self):
        return self.text, self.tool_calls()
