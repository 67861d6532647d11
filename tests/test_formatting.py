"""Tests for result and status rendering."""

from agent_eval.formatting import NO_VALUE_MARKER
from agent_eval.formatting import format_clear_report
from agent_eval.formatting import format_info
from agent_eval.formatting import format_reset
from agent_eval.formatting import format_result
from agent_eval.protocol import EvaluationFailure
from agent_eval.protocol import EvaluationResult
from agent_eval.symbols import ClearReport


def _result(
    value: str | None = None,
    stdout: str = "",
    stderr: str = "",
    error: EvaluationFailure | None = None,
) -> EvaluationResult:
    return EvaluationResult(
        value=value,
        value_type=None if value is None else "int",
        stdout=stdout,
        stderr=stderr,
        error=error,
        duration_seconds=0.01,
    )


def test_value_only() -> None:
    """A plain value renders as a single Result section."""
    assert format_result(_result(value="42")) == "Result: 42"


def test_no_value_marker() -> None:
    """Code without a value says so explicitly."""
    assert format_result(_result()) == f"Result: {NO_VALUE_MARKER}"


def test_output_precedes_result() -> None:
    """Captured output comes before the value."""
    text: str = format_result(_result(value="3", stdout="hello\n"))

    assert text == "Output:\nhello\n\nResult: 3"


def test_stderr_is_marked() -> None:
    """Standard error follows standard output under a marker."""
    text: str = format_result(_result(stdout="out\n", stderr="warn\n"))

    assert text.startswith("Output:\nout\n[stderr]\nwarn")
    assert text.endswith(f"Result: {NO_VALUE_MARKER}")


def test_whitespace_only_output_is_omitted() -> None:
    """Blank output does not produce an Output section."""
    assert format_result(_result(value="1", stdout="\n  \n")) == "Result: 1"


def test_error_comes_first_and_suppresses_result() -> None:
    """An error leads the text and no Result section is emitted."""
    failure: EvaluationFailure = EvaluationFailure(
        kind="ZeroDivisionError",
        message="division by zero",
        trace='  File "<agent-eval:1>", line 2, in <module>\n',
    )
    text: str = format_result(_result(stdout="before\n", error=failure))

    assert text.startswith("Error: ZeroDivisionError: division by zero\n")
    assert "Output:\nbefore" in text
    assert text.index("Error:") < text.index("Output:")
    assert "Result:" not in text


def test_reset_text_names_generation_and_environment() -> None:
    """Reset text reports the new generation and the kept environment."""
    text: str = format_reset(3, "/work/project")

    assert "generation 3" in text
    assert "Environment: /work/project" in text
    assert "Environment: (default)" in format_reset(1, None)


def test_clear_report_text() -> None:
    """Soft-reset text lists both cleared and uncleared names."""
    empty: str = format_clear_report(ClearReport())
    report: ClearReport = ClearReport(cleared=["x", "y"], uncleared=["Point"])
    text: str = format_clear_report(report)

    assert empty == "No user variables to clear."
    assert "Cleared 2 variable(s): x, y" in text
    assert "Not cleared (class or module definitions): Point" in text


def test_info_text() -> None:
    """Info text lists the snapshot fields in order."""
    text: str = format_info("3.12.1", None, [], 120, "pid 10, generation 0")

    assert text.splitlines() == [
        "Python Version: 3.12.1",
        "Active Environment: (default)",
        "User Variables: (none)",
        "Loaded Modules: 120",
        "Worker: pid 10, generation 0",
    ]
