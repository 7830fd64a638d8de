"""Wire protocol codec.

Inbound frames are either a control message or raw terminal input:

    {"type": "resize", "cols": 120, "rows": 30}   -> Resize(120, 30)
    anything else                                  -> RawInput(<bytes>)

Classification tries a JSON parse of the UTF-8 payload. A frame that parses
to an object with ``"type": "resize"`` is control, whatever its size fields
hold; every other frame (bad UTF-8, bad JSON, other shapes) goes to the
shell verbatim. Raw input that happens to be a resize object is therefore
swallowed as a resize; the wire format has no tag to tell them apart.

Outbound traffic has no codec: PTY output is sent as the literal bytes.
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass
from typing import Any

from ptybroker.core.types import DEFAULT_COLS, DEFAULT_ROWS, clamp_dimensions

RESIZE_TYPE = "resize"


@dataclass(frozen=True)
class Resize:
    """Control message: set the terminal size."""

    cols: int
    rows: int

    def clamped(self) -> Resize:
        cols, rows = clamp_dimensions(self.cols, self.rows)
        return Resize(cols=cols, rows=rows)

    def to_json(self) -> str:
        return json.dumps({"type": RESIZE_TYPE, "cols": self.cols, "rows": self.rows})


@dataclass(frozen=True)
class RawInput:
    """Terminal input to feed to the shell unchanged."""

    data: bytes


ControlMessage = Resize
Frame = Resize | RawInput


def _dimension(value: Any, default: int) -> int:
    """Coerce a resize field to a cell count.

    Numbers and numeric strings are used as given (truncated). Anything
    else, and zero, falls back to the default size.
    """
    if isinstance(value, bool) or value is None:
        return default
    if isinstance(value, str):
        try:
            value = float(value.strip() or 0)
        except ValueError:
            return default
    if not isinstance(value, (int, float)):
        return default
    if isinstance(value, float) and not math.isfinite(value):
        return default
    if not value:
        return default
    return int(value)


def parse_control(value: Any) -> ControlMessage | None:
    """Interpret a parsed JSON value as a control message.

    Returns:
        A floor-clamped Resize, or None if the value is not a recognized
        control shape.
    """
    if not isinstance(value, dict) or value.get("type") != RESIZE_TYPE:
        return None
    cols = _dimension(value.get("cols"), DEFAULT_COLS)
    rows = _dimension(value.get("rows"), DEFAULT_ROWS)
    return Resize(cols=cols, rows=rows).clamped()


def decode_frame(payload: bytes | bytearray | memoryview | str) -> Frame:
    """Classify one inbound frame.

    Args:
        payload: Frame payload; text frames arrive as str, binary as bytes.

    Returns:
        Resize for a recognized control message, otherwise RawInput with
        the payload bytes exactly as received.
    """
    if isinstance(payload, str):
        text = payload
        raw = payload.encode("utf-8")
    else:
        raw = bytes(payload)
        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError:
            return RawInput(raw)

    # Cheap pre-check, only objects can be control messages
    if not text.lstrip().startswith("{"):
        return RawInput(raw)

    try:
        value = json.loads(text)
    except ValueError:
        return RawInput(raw)

    control = parse_control(value)
    if control is None:
        return RawInput(raw)
    return control


def encode_resize(cols: int, rows: int, clamp: bool = True) -> str:
    """Encode a resize control frame (client side), floor-clamped by default."""
    message = Resize(cols=int(cols), rows=int(rows))
    if clamp:
        message = message.clamped()
    return message.to_json()
