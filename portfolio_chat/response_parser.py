
from typing import Any

# Appended by the model when the visitor asked to be put in touch with the owner.
INQUIRY_MARKER = "[[CONNECT_VISITOR]]"


def has_inquiry_marker(text: str, marker: str = INQUIRY_MARKER) -> bool:
    return marker in text


def message_text(message: Any) -> str:
    """Plain text of a model reply or stream chunk (content may be a list of parts)."""
    content = getattr(message, "content", message)
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, str):
                parts.append(part)
            elif isinstance(part, dict) and part.get("type") == "text":
                parts.append(part.get("text", ""))
        return "".join(parts)
    return "" if content is None else str(content)


class InquiryMarkerFilter:
    """
    Removes the inquiry marker from a token stream.

    The marker can arrive split over several chunks, so any tail of the
    buffer that could still grow into the marker is held back until the
    next chunk (or ``flush``) decides it.
    """

    def __init__(self, marker: str = INQUIRY_MARKER) -> None:
        self._marker = marker
        self._pending = ""
        self.triggered = False

    def feed(self, chunk: str) -> str:
        buffer = self._pending + chunk
        if has_inquiry_marker(buffer, self._marker):
            self.triggered = True
            buffer = buffer.replace(self._marker, "")

        hold = self._partial_marker_len(buffer)
        if hold:
            self._pending = buffer[-hold:]
            return buffer[:-hold]
        self._pending = ""
        return buffer

    def flush(self) -> str:
        rest, self._pending = self._pending, ""
        return rest

    def _partial_marker_len(self, buffer: str) -> int:
        for size in range(min(len(buffer), len(self._marker) - 1), 0, -1):
            if self._marker.startswith(buffer[-size:]):
                return size
        return 0
