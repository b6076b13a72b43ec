"""
Stable fingerprinting for error events.

Two errors that differ only in variable values (ids, numbers, quoted
literals, memory addresses) or in line/column positions of the same frames
produce the same fingerprint. Everything here is a pure function of its
input.
"""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass
from typing import List, Optional, Tuple

from pulsecore.events.models import (
    BackendErrorPayload,
    Event,
    EventInput,
    FeedbackPayload,
    FrontendErrorPayload,
)

DEFAULT_TOP_FRAMES = 5
FINGERPRINT_LENGTH = 16
FIELD_SEPARATOR = "\x1f"

_UUID_RE = re.compile(r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}", re.IGNORECASE)
_TIMESTAMP_RE = re.compile(r"\d{4}-\d{2}-\d{2}[T ]\d{2}:\d{2}:\d{2}(?:\.\d+)?(?:Z|[+-]\d{2}:?\d{2})?")
_HEX_ADDR_RE = re.compile(r"\b0x[0-9a-f]+\b", re.IGNORECASE)
_LONG_HEX_RE = re.compile(r"\b[0-9a-f]{16,}\b", re.IGNORECASE)
_QUOTED_RE = re.compile(r"'[^'\n]*'|\"[^\"\n]*\"|`[^`\n]*`")
_PATH_RE = re.compile(r"(?:[A-Za-z]:\\|/)(?:[\w.\-]+[\\/])+([\w.\-]+)")
_NUMBER_RE = re.compile(r"(?<![\w.])[-+]?\d+(?:\.\d+)?(?!\w|\.\d)")
_WHITESPACE_RE = re.compile(r"\s+")

# JS:  "at fn (https://host/static/app.js?v=3:10:5)" or "at https://host/app.js:10:5"
_JS_FRAME_RE = re.compile(r"^at\s+(?:(?P<fn>.+?)\s+\()?(?P<loc>[^()\s]+?)(?::\d+)?(?::\d+)?\)?$")
# Python: 'File "/srv/app/views.py", line 42, in handler'
_PY_FRAME_RE = re.compile(r'^File\s+"(?P<loc>[^"]+)",\s+line\s+\d+(?:,\s+in\s+(?P<fn>.+))?$')
# Firefox/Safari: "fn@https://host/app.js:10:5"
_GECKO_FRAME_RE = re.compile(r"^(?P<fn>[^@\s]*)@(?P<loc>.+?)(?::\d+)?(?::\d+)?$")


@dataclass(frozen=True)
class FingerprintInput:
    """Normalized fields that identify an error."""
    error_type: str
    message: str
    frames: Tuple[str, ...] = ()
    route: Optional[str] = None


def normalize_error_type(error_type: Optional[str]) -> str:
    cleaned = _WHITESPACE_RE.sub(" ", str(error_type or "")).strip()
    return cleaned or "UnknownError"


def normalize_message(message: Optional[str]) -> str:
    """Replace dynamic tokens in an error message with placeholders."""
    if not message:
        return ""

    text = str(message)
    text = _UUID_RE.sub("<UUID>", text)
    text = _TIMESTAMP_RE.sub("<TIMESTAMP>", text)
    text = _HEX_ADDR_RE.sub("<HEX>", text)
    text = _LONG_HEX_RE.sub("<HEX>", text)
    text = _QUOTED_RE.sub("<STR>", text)
    text = _PATH_RE.sub(r"\1", text)
    text = _NUMBER_RE.sub("<NUM>", text)
    return _WHITESPACE_RE.sub(" ", text).strip()


def _basename(location: str) -> str:
    location = location.split("?", 1)[0].split("#", 1)[0]
    location = re.sub(r":\d+(?::\d+)?$", "", location)
    return re.split(r"[\\/]", location)[-1] or location


def normalize_frame(line: str) -> Optional[str]:
    """
    Reduce one stack line to "file:function", or None if it is not a frame.
    """
    line = line.strip()
    if not line:
        return None

    for pattern in (_PY_FRAME_RE, _JS_FRAME_RE, _GECKO_FRAME_RE):
        match = pattern.match(line)
        if match:
            fn = (match.group("fn") or "<anonymous>").strip()
            fn = re.sub(r"^(?:async|new)\s+", "", fn)
            return f"{_basename(match.group('loc'))}:{fn}"
    return None


def extract_top_frames(stack: Optional[str], top_n: int = DEFAULT_TOP_FRAMES) -> Tuple[str, ...]:
    """
    Normalize the ``top_n`` innermost frames of a stack trace.

    JavaScript stacks list the innermost frame first. Python tracebacks are
    printed most recent call last, so they are read from the bottom up.
    """
    if not stack:
        return ()

    lines = str(stack).splitlines()
    frames: List[str] = []
    python_order = bool(lines) and lines[0].strip().startswith("Traceback (most recent call last)")
    for line in lines:
        frame = normalize_frame(line)
        if frame:
            frames.append(frame)
            if _PY_FRAME_RE.match(line.strip()):
                python_order = True

    if python_order:
        return tuple(reversed(frames[-top_n:]))
    return tuple(frames[:top_n])


def normalize_route(route_or_url: Optional[str]) -> str:
    """Group routes: drop query/fragment, replace numeric and UUID segments."""
    if not route_or_url:
        return ""

    route = route_or_url.split("?", 1)[0].split("#", 1)[0]
    route = re.sub(r"/\d+(?=/|$)", "/<id>", route)
    route = re.sub(
        r"/[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}(?=/|$)",
        "/<uuid>",
        route,
        flags=re.IGNORECASE,
    )
    return route.rstrip("/")


def extract_fingerprint_input(
    event,
    top_n: int = DEFAULT_TOP_FRAMES,
    include_route: bool = False,
) -> Optional[FingerprintInput]:
    """
    Build the fingerprint input for an event.

    Returns None for feedback: feedback is never grouped.
    """
    if not isinstance(event, (Event, EventInput)):
        raise TypeError(f"Expected Event or EventInput, got {type(event).__name__}")

    payload = event.payload
    if isinstance(payload, FeedbackPayload):
        return None
    if isinstance(payload, (FrontendErrorPayload, BackendErrorPayload)):
        return FingerprintInput(
            error_type=normalize_error_type(payload.error_type),
            message=normalize_message(payload.message),
            frames=extract_top_frames(payload.stack, top_n),
            route=normalize_route(event.route_or_url) if include_route else None,
        )
    raise TypeError(f"Unsupported payload type: {type(payload).__name__}")


def generate_fingerprint(data: FingerprintInput) -> str:
    """
    Hash a fingerprint input.

    Each field is length-prefixed and joined with a unit separator, so no
    choice of field contents can collide with a different split.
    """
    fields = [data.error_type, data.message, "\n".join(data.frames)]
    if data.route is not None:
        fields.append(data.route)

    canonical = FIELD_SEPARATOR.join(f"{len(value)}:{value}" for value in fields)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:FINGERPRINT_LENGTH]


def compute_similarity(a: FingerprintInput, b: FingerprintInput) -> float:
    """
    Weighted similarity in [0, 1] between two inputs.

    Weights: error type 0.3, message 0.4 (word Jaccard when not equal),
    frames 0.2, route 0.1.
    """
    total = 0.0
    if a.error_type == b.error_type:
        total += 0.3

    if a.message == b.message:
        total += 0.4
    elif a.message and b.message:
        words_a = set(a.message.lower().split())
        words_b = set(b.message.lower().split())
        total += 0.4 * len(words_a & words_b) / len(words_a | words_b)

    if a.frames and a.frames == b.frames:
        total += 0.2

    if a.route and a.route == b.route:
        total += 0.1

    return round(total, 6)
