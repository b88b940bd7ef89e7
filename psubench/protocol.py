from __future__ import annotations

TERMINATOR = "\n"
ENCODING = "ascii"


def frame(text: str) -> bytes:
    """Encode one command line, appending the terminator if it is missing."""
    if not text.endswith(TERMINATOR):
        text += TERMINATOR
    return text.encode(ENCODING)


def unframe(data: bytes) -> str:
    # Responses are single lines; strip the terminator and any padding around it
    return data.decode(ENCODING, errors="replace").strip() if data else ""
