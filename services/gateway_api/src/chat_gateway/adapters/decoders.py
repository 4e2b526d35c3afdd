"""Incremental decoders for provider streaming bodies.

Both decoders accept raw bytes in whatever chunks the network delivers and
return the JSON payloads that became complete with that chunk. Feeding a body
in one piece or split at arbitrary byte offsets yields the same payloads in
the same order.
"""

import json
import logging

logger = logging.getLogger(__name__)

DATA_PREFIX = b"data:"
DONE_MARKER = b"[DONE]"


class SSELineDecoder:
    """Decoder for line-delimited ``data: <json>`` bodies (OpenAI, llama.cpp)."""

    def __init__(self) -> None:
        self._buffer = b""
        self.done = False
        self._truncated = False

    def feed(self, chunk: bytes) -> list[dict]:
        if self.done:
            return []
        self._buffer += chunk
        payloads: list[dict] = []
        while not self.done:
            line_end = self._buffer.find(b"\n")
            if line_end < 0:
                break
            line = self._buffer[:line_end]
            self._buffer = self._buffer[line_end + 1 :]
            payload = self._decode_line(line)
            if payload is not None:
                payloads.append(payload)
        return payloads

    def flush(self) -> list[dict]:
        """Decode a final record that arrived without a trailing newline."""
        if self.done or not self._buffer:
            return []
        line, self._buffer = self._buffer, b""
        payload = self._decode_line(line)
        if payload is None and not self.done and line.strip().startswith(DATA_PREFIX):
            self._truncated = True
        return [payload] if payload is not None else []

    @property
    def pending(self) -> bool:
        """True when the body ended inside a data record."""
        return self._truncated

    def _decode_line(self, line: bytes) -> dict | None:
        line = line.strip()
        if not line or not line.startswith(DATA_PREFIX):
            return None
        data = line[len(DATA_PREFIX) :].strip()
        if data == DONE_MARKER:
            self.done = True
            return None
        try:
            payload = json.loads(data)
        except ValueError:
            logger.warning("skipping undecodable stream line bytes=%s", len(data))
            return None
        if not isinstance(payload, dict):
            return None
        return payload


class JSONObjectStreamDecoder:
    """Decoder for a top-level JSON array streamed without delimiters (Gemini).

    Tracks brace depth outside of string literals, so ``{`` or ``}`` inside
    text never closes an object early. The scan position is kept between
    feeds and each byte is inspected once.
    """

    def __init__(self) -> None:
        self._buffer = b""
        self._pos = 0
        self._depth = 0
        self._start = -1
        self._in_string = False
        self._escaped = False

    def feed(self, chunk: bytes) -> list[dict]:
        self._buffer += chunk
        payloads: list[dict] = []
        buffer = self._buffer
        pos = self._pos
        while pos < len(buffer):
            byte = buffer[pos]
            if self._in_string:
                if self._escaped:
                    self._escaped = False
                elif byte == 0x5C:  # backslash
                    self._escaped = True
                elif byte == 0x22:  # quote
                    self._in_string = False
            elif byte == 0x22:
                if self._depth > 0:
                    self._in_string = True
            elif byte == 0x7B:  # {
                if self._depth == 0:
                    self._start = pos
                self._depth += 1
            elif byte == 0x7D and self._depth > 0:  # }
                self._depth -= 1
                if self._depth == 0:
                    payload = self._decode_object(buffer[self._start : pos + 1])
                    if payload is not None:
                        payloads.append(payload)
                    buffer = buffer[pos + 1 :]
                    pos = 0
                    self._start = -1
                    continue
            pos += 1

        if self._depth == 0:
            # Only array punctuation and whitespace remain outside an object.
            buffer = b""
            pos = 0
        elif self._start > 0:
            buffer = buffer[self._start :]
            pos -= self._start
            self._start = 0
        self._buffer = buffer
        self._pos = pos
        return payloads

    @property
    def pending(self) -> bool:
        return self._depth > 0

    def _decode_object(self, raw: bytes) -> dict | None:
        try:
            payload = json.loads(raw)
        except ValueError:
            logger.warning("dropping undecodable stream object bytes=%s", len(raw))
            return None
        if not isinstance(payload, dict):
            return None
        return payload
