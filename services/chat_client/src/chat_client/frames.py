import json
import logging

logger = logging.getLogger(__name__)

FRAME_SEPARATOR = "\n\n"
COMMENT_PREFIX = ":"
DATA_FIELD = "data:"


class SSEFrameDecoder:
    """Reassembles ``data: {...}\\n\\n`` frames from arbitrarily split text.

    A trailing incomplete frame is kept until the rest of it arrives.
    Heartbeat comments and non-data fields are ignored; a frame whose data is
    not a JSON object is logged and skipped.
    """

    def __init__(self) -> None:
        self._buffer = ""

    def feed(self, text: str) -> list[dict]:
        self._buffer += text
        *complete, self._buffer = self._buffer.split(FRAME_SEPARATOR)
        frames = []
        for raw in complete:
            frame = self._decode(raw)
            if frame is not None:
                frames.append(frame)
        return frames

    @property
    def pending(self) -> str:
        return self._buffer

    def _decode(self, raw: str) -> dict | None:
        data_lines = []
        for line in raw.split("\n"):
            if not line or line.startswith(COMMENT_PREFIX):
                continue
            if line.startswith(DATA_FIELD):
                data = line[len(DATA_FIELD) :]
                data_lines.append(data[1:] if data.startswith(" ") else data)
        if not data_lines:
            return None
        data_str = "\n".join(data_lines)
        try:
            frame = json.loads(data_str)
        except json.JSONDecodeError:
            logger.warning("skipping undecodable frame chars=%s", len(data_str))
            return None
        if not isinstance(frame, dict) or "type" not in frame:
            logger.warning("skipping frame without a type")
            return None
        return frame
