"""Evaluate one code unit with captured standard streams."""

import ast
import builtins
import collections
import contextlib
import io
import itertools
import linecache
import time
import traceback
from types import TracebackType

from agent_eval.protocol import EvaluationFailure
from agent_eval.protocol import EvaluationResult

SOURCE_LABEL_PREFIX: str = "<agent-eval"
_SOURCE_COUNTER: "itertools.count[int]" = itertools.count(1)
MAX_CACHED_SOURCES: int = 512
_CACHED_LABELS: "collections.deque[str]" = collections.deque()


def _register_source(code: str) -> str:
    """Register ``code`` with ``linecache`` under a unique pseudo filename.

    Tracebacks raised later by functions defined in this code unit keep
    pointing at the right source lines. Only the most recent
    :data:`MAX_CACHED_SOURCES` units stay cached; older ones show no source
    text in tracebacks.

    :param code: Source text.
    :returns: Pseudo filename used for compilation.
    """
    label: str = f"{SOURCE_LABEL_PREFIX}:{next(_SOURCE_COUNTER)}>"
    lines: list[str] = code.splitlines(keepends=True)
    linecache.cache[label] = (len(code), None, lines, label)
    _CACHED_LABELS.append(label)
    while len(_CACHED_LABELS) > MAX_CACHED_SOURCES:
        linecache.cache.pop(_CACHED_LABELS.popleft(), None)
    return label


def new_namespace() -> dict[str, object]:
    """Create a fresh top-level namespace that behaves like ``__main__``.

    :returns: Namespace dictionary.
    """
    return {
        "__name__": "__main__",
        "__builtins__": builtins,
        "__doc__": None,
    }


def represent_value(value: object) -> str:
    """Return the ``repr()`` of ``value`` or a placeholder when it fails.

    :param value: Runtime value.
    :returns: Display text.
    """
    try:
        text: object = repr(value)
    except Exception:
        return f"<unrepresentable {type(value).__name__}>"
    if isinstance(text, str) is False:
        return f"<unrepresentable {type(value).__name__}>"
    return text


def _user_traceback(exc: BaseException) -> TracebackType | None:
    """Drop the evaluator's own frames from the front of a traceback.

    :param exc: Exception raised by submitted code.
    :returns: First traceback entry that belongs to submitted code.
    """
    current: TracebackType | None = exc.__traceback__
    while current is not None:
        filename: str = current.tb_frame.f_code.co_filename
        if filename.startswith(SOURCE_LABEL_PREFIX) is True:
            return current
        current = current.tb_next
    return None


def _describe_failure(exc: BaseException) -> EvaluationFailure:
    """Convert an exception from submitted code into failure data.

    :param exc: Exception raised while compiling or running the code.
    :returns: Evaluation failure.
    """
    trace_lines: list[str] = traceback.format_exception(type(exc), exc, _user_traceback(exc))
    return EvaluationFailure(
        kind=type(exc).__name__,
        message=str(exc),
        trace="".join(trace_lines),
    )


def _split_trailing_expression(tree: ast.Module) -> ast.Expression | None:
    """Detach a trailing expression statement so its value can be returned.

    :param tree: Parsed module; modified in place.
    :returns: Expression node for the final statement, or ``None``.
    """
    if len(tree.body) == 0:
        return None
    last_statement: ast.stmt = tree.body[-1]
    if isinstance(last_statement, ast.Expr) is False:
        return None
    tree.body.pop()
    expression: ast.Expression = ast.Expression(body=last_statement.value)
    return ast.fix_missing_locations(expression)


def _run(code: str, namespace: dict[str, object]) -> object:
    """Execute ``code`` in ``namespace`` and return its trailing value.

    :param code: Source text.
    :param namespace: Shared top-level namespace.
    :returns: Value of the trailing expression, or ``None``.
    """
    label: str = _register_source(code)
    tree: ast.Module = ast.parse(code, filename=label, mode="exec")
    trailing: ast.Expression | None = _split_trailing_expression(tree)
    exec(compile(tree, label, "exec"), namespace)
    if trailing is None:
        return None
    return eval(compile(trailing, label, "eval"), namespace)


def capture_evaluation(code: str, namespace: dict[str, object]) -> EvaluationResult:
    """Evaluate one code unit and capture its value, output and error.

    Standard output and standard error are redirected to in-memory buffers for
    the duration of the call. Output written before a failure is kept.

    :param code: Source text.
    :param namespace: Shared top-level namespace; definitions persist in it.
    :returns: Evaluation result.
    """
    stdout_buffer: io.StringIO = io.StringIO()
    stderr_buffer: io.StringIO = io.StringIO()
    value: object = None
    failure: EvaluationFailure | None = None

    started: float = time.perf_counter()
    with contextlib.redirect_stdout(stdout_buffer), contextlib.redirect_stderr(stderr_buffer):
        try:
            value = _run(code, namespace)
        except (Exception, SystemExit) as exc:
            failure = _describe_failure(exc)
    duration_seconds: float = time.perf_counter() - started

    stdout_text: str = stdout_buffer.getvalue()
    stderr_text: str = stderr_buffer.getvalue()
    stdout_buffer.close()
    stderr_buffer.close()

    if failure is not None or value is None:
        return EvaluationResult(
            value=None,
            value_type=None,
            stdout=stdout_text,
            stderr=stderr_text,
            error=failure,
            duration_seconds=duration_seconds,
        )

    return EvaluationResult(
        value=represent_value(value),
        value_type=type(value).__name__,
        stdout=stdout_text,
        stderr=stderr_text,
        error=None,
        duration_seconds=duration_seconds,
    )
