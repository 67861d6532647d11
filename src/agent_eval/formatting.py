"""Render results as display text.

The section order is fixed so a caller that only shows the first lines sees
the outcome before the raw transcript: ``Error`` first when the code failed,
then ``Output`` when anything was printed, then ``Result`` when there was no
error.
"""

from agent_eval.protocol import EvaluationResult
from agent_eval.symbols import ClearReport

NO_VALUE_MARKER: str = "(no value)"
STDERR_MARKER: str = "[stderr]"
SECTION_SEPARATOR: str = "\n\n"


def _output_section(result: EvaluationResult) -> str | None:
    """Build the captured-output section.

    :param result: Evaluation result.
    :returns: Section text, or ``None`` when nothing was captured.
    """
    stdout: str = result.stdout
    stderr: str = result.stderr
    if stdout.strip() == "" and stderr.strip() == "":
        return None

    body: str = stdout.rstrip("\n")
    if stderr.strip() != "":
        if body != "":
            body += "\n"
        body += f"{STDERR_MARKER}\n{stderr.rstrip()}"
    return f"Output:\n{body}"


def format_result(result: EvaluationResult) -> str:
    """Render an evaluation result.

    :param result: Evaluation result.
    :returns: Display text.
    """
    sections: list[str] = []
    if result.error is not None:
        error_text: str = f"Error: {result.error.kind}: {result.error.message}"
        trace: str = result.error.trace.rstrip()
        if trace != "":
            error_text += f"\n{trace}"
        sections.append(error_text)

    output: str | None = _output_section(result)
    if output is not None:
        sections.append(output)

    if result.error is None:
        if result.value is None:
            sections.append(f"Result: {NO_VALUE_MARKER}")
        else:
            sections.append(f"Result: {result.value}")

    return SECTION_SEPARATOR.join(sections)


def format_reset(generation: int, environment_path: str | None) -> str:
    """Render the outcome of a hard reset.

    :param generation: New generation number.
    :param environment_path: Environment reapplied to the new worker.
    :returns: Display text.
    """
    environment: str = "(default)" if environment_path is None else environment_path
    return (
        f"Worker restarted (generation {generation}). "
        + "All variables, functions, classes and imports were discarded.\n"
        + f"Environment: {environment}"
    )


def format_clear_report(report: ClearReport) -> str:
    """Render the outcome of a soft reset.

    :param report: Cleared and uncleared names.
    :returns: Display text.
    """
    if report.count == 0 and len(report.uncleared) == 0:
        return "No user variables to clear."

    lines: list[str] = []
    if report.count > 0:
        lines.append(f"Cleared {report.count} variable(s): {', '.join(report.cleared)}")
    else:
        lines.append("No variables were cleared.")
    if len(report.uncleared) > 0:
        lines.append(f"Not cleared (class or module definitions): {', '.join(report.uncleared)}")
    lines.append("Note: soft reset cannot undo class or module definitions; use subprocess mode for a full reset.")
    return "\n".join(lines)


def format_info(
    python_version: str,
    environment_path: str | None,
    binding_names: list[str],
    loaded_module_count: int,
    worker_description: str,
) -> str:
    """Render a session snapshot.

    :param python_version: Interpreter version.
    :param environment_path: Active environment directory.
    :param binding_names: User binding names.
    :param loaded_module_count: Number of entries in ``sys.modules``.
    :param worker_description: Worker identity text.
    :returns: Display text.
    """
    environment: str = "(default)" if environment_path is None else environment_path
    bindings: str = "(none)" if len(binding_names) == 0 else ", ".join(binding_names)
    return (
        f"Python Version: {python_version}\n"
        + f"Active Environment: {environment}\n"
        + f"User Variables: {bindings}\n"
        + f"Loaded Modules: {loaded_module_count}\n"
        + f"Worker: {worker_description}"
    )
