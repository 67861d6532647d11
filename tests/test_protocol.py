"""Tests for channel message validation."""

import pytest

from agent_eval.errors import ProtocolError
from agent_eval.protocol import EvaluationFailure
from agent_eval.protocol import EvaluationResult
from agent_eval.protocol import decode_result
from agent_eval.protocol import encode_result
from agent_eval.protocol import optional_str_field
from agent_eval.protocol import require_action
from agent_eval.protocol import require_request_id


def test_result_rejects_value_with_error() -> None:
    """A result cannot carry both a value and an error."""
    failure: EvaluationFailure = EvaluationFailure(kind="ValueError", message="bad", trace="")
    with pytest.raises(ValueError):
        EvaluationResult(
            value="1",
            value_type="int",
            stdout="",
            stderr="",
            error=failure,
            duration_seconds=0.0,
        )


def test_encoded_failure_survives_decoding() -> None:
    """An error result keeps its kind, message, trace and partial output."""
    result: EvaluationResult = EvaluationResult(
        value=None,
        value_type=None,
        stdout="partial\n",
        stderr="",
        error=EvaluationFailure(kind="KeyError", message="'k'", trace="trace text"),
        duration_seconds=0.5,
    )
    decoded: EvaluationResult = decode_result(encode_result(result))

    assert decoded == result
    assert decoded.has_value is False


def test_request_id_must_be_a_plain_integer() -> None:
    """Booleans and strings are not request identifiers."""
    assert require_request_id({"request_id": 4}) == 4
    with pytest.raises(ProtocolError):
        require_request_id({"request_id": True})
    with pytest.raises(ProtocolError):
        require_request_id({"request_id": "4"})
    with pytest.raises(ProtocolError):
        require_action({"action": 3})


def test_optional_field_rejects_wrong_type() -> None:
    """Optional string fields accept ``None`` but not other types."""
    assert optional_str_field({}, "value") is None
    with pytest.raises(ProtocolError):
        optional_str_field({"value": 12}, "value")


def test_decode_rejects_malformed_payloads() -> None:
    """Missing streams, bad durations and contradictory payloads are rejected."""
    base: dict[str, object] = {
        "value": None,
        "value_type": None,
        "stdout": "",
        "stderr": "",
        "error": None,
        "duration_seconds": 0.1,
    }
    with pytest.raises(ProtocolError):
        decode_result({key: value for key, value in base.items() if key != "stdout"})
    with pytest.raises(ProtocolError):
        decode_result({**base, "duration_seconds": "fast"})
    with pytest.raises(ProtocolError):
        decode_result({**base, "error": "boom"})
    with pytest.raises(ProtocolError):
        decode_result({**base, "value": "1", "error": {"kind": "E", "message": "m", "trace": ""}})
