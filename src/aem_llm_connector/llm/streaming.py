"""Reassembly of Ollama's newline-delimited streaming responses."""

from __future__ import annotations

import json
import logging
import threading
from typing import Iterable

from aem_llm_connector.errors import EmptyModelResponse, InvocationCancelled, UpstreamStreamError
from aem_llm_connector.types import StreamChunk

_logger = logging.getLogger(__name__)


def parse_chunk(line: str) -> StreamChunk | None:
    """Decode one NDJSON line.  Returns ``None`` for blank or malformed lines."""
    if not line or not line.strip():
        return None
    try:
        data = json.loads(line)
    except json.JSONDecodeError:
        _logger.warning("Skipping malformed JSON chunk: %.200s", line)
        return None
    if not isinstance(data, dict):
        _logger.warning("Skipping non-object chunk: %.200s", line)
        return None

    error = data.get("error")
    text = data.get("response")
    return StreamChunk(
        partial_text=text if isinstance(text, str) else "",
        is_final=bool(data.get("done")),
        error=str(error) if error is not None else None,
    )


class StreamAssembler:
    """Accumulates chunk text in arrival order until the final chunk."""

    def __init__(self, model: str = "") -> None:
        self.model = model
        self._parts: list[str] = []
        self.chunks = 0
        self.skipped = 0
        self.finished = False

    def feed(self, line: str) -> bool:
        """Consume one line.  Returns ``True`` once the final chunk was seen."""
        if self.finished:
            return True
        chunk = parse_chunk(line)
        if chunk is None:
            if line.strip():
                self.skipped += 1
            return False
        self.chunks += 1
        if chunk.error is not None:
            _logger.error("Ollama streaming error: %s", chunk.error)
            raise UpstreamStreamError(chunk.error)
        if chunk.partial_text:
            self._parts.append(chunk.partial_text)
        if chunk.is_final:
            self.finished = True
        return self.finished

    def result(self) -> str:
        text = "".join(self._parts)
        if not text:
            _logger.error("No response content received from streaming")
            raise EmptyModelResponse(self.model)
        return text


def assemble(
    lines: Iterable[str],
    model: str = "",
    cancel_event: threading.Event | None = None,
) -> str:
    """Assemble a complete reply from an iterable of NDJSON lines.

    Lines after the first ``done: true`` chunk are not read.
    """
    assembler = StreamAssembler(model)
    for line in lines:
        if cancel_event is not None and cancel_event.is_set():
            raise InvocationCancelled("streaming")
        if assembler.feed(line):
            break
    text = assembler.result()
    _logger.info(
        "Stream completed - %d chunks, %d chars (%d malformed skipped)",
        assembler.chunks, len(text), assembler.skipped,
    )
    return text


def assemble_text(body: str, model: str = "") -> str:
    """Assemble a reply from a fully buffered response body."""
    return assemble(body.splitlines(), model=model)
