"""Tests for the wire protocol codec."""

from __future__ import annotations

import json

import pytest

from ptybroker.core.protocol import (
    RawInput,
    Resize,
    decode_frame,
    encode_resize,
    parse_control,
)


class TestDecodeFrame:
    """Classification of inbound frames."""

    def test_resize_text_frame(self):
        """A resize object in a text frame is control."""
        assert decode_frame('{"type": "resize", "cols": 120, "rows": 30}') == Resize(120, 30)

    def test_resize_binary_frame(self):
        """Binary frames holding a resize object are control too."""
        assert decode_frame(b'{"type":"resize","cols":100,"rows":40}') == Resize(100, 40)

    def test_resize_below_floor_is_clamped(self):
        """Degenerate sizes are raised to the floor, never rejected."""
        assert decode_frame('{"type":"resize","cols":1,"rows":1}') == Resize(10, 10)

    def test_zero_and_missing_fields_use_defaults(self):
        """Zero, null or missing dimensions fall back to 80x24."""
        assert decode_frame('{"type":"resize","cols":0,"rows":0}') == Resize(80, 24)
        assert decode_frame('{"type":"resize"}') == Resize(80, 24)
        assert decode_frame('{"type":"resize","cols":null,"rows":50}') == Resize(80, 50)

    def test_float_dimensions_truncate(self):
        assert decode_frame('{"type":"resize","cols":99.7,"rows":30.2}') == Resize(99, 30)

    def test_negative_dimensions_clamp(self):
        assert decode_frame('{"type":"resize","cols":-5,"rows":-1}') == Resize(10, 10)

    def test_plain_keystrokes_are_raw(self):
        """Ordinary input goes to the shell verbatim."""
        assert decode_frame(b"ls -la\r") == RawInput(b"ls -la\r")

    def test_text_frame_raw_input_is_utf8(self):
        """Text frames are carried as their UTF-8 bytes."""
        assert decode_frame("héllo") == RawInput("héllo".encode())

    def test_invalid_utf8_is_raw(self):
        """Bytes that do not decode are raw input, unchanged."""
        payload = b"\xff\xfe\x1b[A"
        assert decode_frame(payload) == RawInput(payload)

    def test_invalid_json_is_raw(self):
        payload = b'{"type": "resize", cols: 1'
        assert decode_frame(payload) == RawInput(payload)

    def test_other_json_shapes_are_raw(self):
        """Valid JSON that is not a resize object is raw input."""
        for payload in (b"[1, 2]", b"42", b'"resize"', b'{"type": "ping"}', b"{}"):
            assert decode_frame(payload) == RawInput(payload)

    def test_numeric_string_dimensions(self):
        """Numeric strings are coerced, so the frame never reaches the shell."""
        assert decode_frame('{"type":"resize","cols":"120","rows":"30"}') == Resize(120, 30)
        assert decode_frame('{"type":"resize","cols":" 90.5 ","rows":"40"}') == Resize(90, 40)

    @pytest.mark.parametrize(
        "payload",
        [
            b'{"type":"resize","cols":"wide","rows":"tall"}',
            b'{"type":"resize","cols":true,"rows":false}',
            b'{"type":"resize","cols":[80],"rows":{"n":24}}',
            b'{"type":"resize","cols":"","rows":"NaN"}',
        ],
    )
    def test_unusable_dimensions_fall_back_to_defaults(self, payload):
        """A resize with unusable fields is still control, at the default size."""
        assert decode_frame(payload) == Resize(80, 24)

    def test_oversized_dimensions_are_capped(self):
        """Sizes beyond what a winsize can hold are capped, not rejected."""
        assert decode_frame('{"type":"resize","cols":70000,"rows":30}') == Resize(65535, 30)
        assert decode_frame('{"type":"resize","cols":65535,"rows":1e12}') == Resize(65535, 65535)

    def test_json_looking_input_is_swallowed_as_resize(self):
        """Raw input that happens to be a resize object is taken as control.

        The wire format cannot tell the two apart; this pins that behavior.
        """
        typed = '{"type":"resize","cols":90,"rows":20}'
        assert isinstance(decode_frame(typed), Resize)

    def test_leading_whitespace_is_tolerated(self):
        assert decode_frame(b'  \n{"type":"resize","cols":90,"rows":20}') == Resize(90, 20)

    def test_memoryview_payload(self):
        assert decode_frame(memoryview(b"abc")) == RawInput(b"abc")

    def test_empty_frame_is_raw(self):
        assert decode_frame(b"") == RawInput(b"")


class TestParseControl:
    """Interpretation of already-parsed JSON values."""

    def test_resize_dict(self):
        assert parse_control({"type": "resize", "cols": 200, "rows": 50}) == Resize(200, 50)

    @pytest.mark.parametrize("value", [None, [], "resize", {"type": "RESIZE"}, {"cols": 80}])
    def test_unrecognized_shapes(self, value):
        assert parse_control(value) is None

    def test_infinite_dimension_uses_default(self):
        assert parse_control({"type": "resize", "cols": float("inf"), "rows": 24}) == Resize(80, 24)


class TestEncodeResize:
    """Client-side encoding."""

    def test_round_trips_through_decoder(self):
        assert decode_frame(encode_resize(132, 43)) == Resize(132, 43)

    def test_clamps_by_default(self):
        assert json.loads(encode_resize(0, 3)) == {"type": "resize", "cols": 10, "rows": 10}

    def test_clamp_can_be_disabled(self):
        assert json.loads(encode_resize(3, 3, clamp=False))["cols"] == 3

    def test_resize_clamped(self):
        assert Resize(5, 500).clamped() == Resize(10, 500)
