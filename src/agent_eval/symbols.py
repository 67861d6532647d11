"""Binding enumeration and clearing for the in-process soft reset.

Soft reset deletes plain bindings from a namespace. It cannot undo class or
module definitions that other objects may still reference, so those are
reported as uncleared instead of removed. A hard reset of the worker process
is the only way to get rid of them.
"""

import types
from collections.abc import Iterable
from collections.abc import MutableMapping
from dataclasses import dataclass
from dataclasses import field


@dataclass(frozen=True)
class UserBinding:
    """One name in a namespace, as seen by the soft reset."""

    name: str
    is_protected: bool


@dataclass
class ClearReport:
    """Outcome of a soft reset."""

    cleared: list[str] = field(default_factory=list)
    uncleared: list[str] = field(default_factory=list)

    @property
    def count(self) -> int:
        """Return how many bindings were cleared.

        :returns: Number of cleared bindings.
        """
        return len(self.cleared)


class SymbolFilter:
    """Decide which namespace names belong to the user."""

    denied_names: frozenset[str]
    internal_prefixes: tuple[str, ...]

    def __init__(self, denied_names: Iterable[str], internal_prefixes: Iterable[str]) -> None:
        """Initialize the filter.

        :param denied_names: Names that are never cleared.
        :param internal_prefixes: Name prefixes reserved by the interpreter.
        """
        self.denied_names = frozenset(denied_names)
        self.internal_prefixes = tuple(prefix for prefix in internal_prefixes if prefix != "")

    def is_internal(self, name: str) -> bool:
        """Report whether ``name`` uses a reserved prefix.

        :param name: Binding name.
        :returns: ``True`` for interpreter-internal names.
        """
        return name.startswith(self.internal_prefixes)

    def is_protected(self, name: str) -> bool:
        """Report whether ``name`` must never be cleared.

        :param name: Binding name.
        :returns: ``True`` for denied or internal names.
        """
        if name in self.denied_names:
            return True
        return self.is_internal(name)


def is_structural(value: object) -> bool:
    """Report whether ``value`` is a class or module definition.

    :param value: Bound value.
    :returns: ``True`` when a soft reset must leave the binding alone.
    """
    if isinstance(value, type) is True:
        return True
    return isinstance(value, types.ModuleType)


def list_user_bindings(scope: MutableMapping[str, object], symbol_filter: SymbolFilter) -> list[UserBinding]:
    """List the non-internal bindings of ``scope`` in name order.

    :param scope: Namespace to inspect.
    :param symbol_filter: Name predicate.
    :returns: Bindings flagged with their protection status.
    """
    bindings: list[UserBinding] = []
    for name in sorted(scope.keys()):
        if symbol_filter.is_internal(name) is True:
            continue
        bindings.append(UserBinding(name=name, is_protected=symbol_filter.is_protected(name)))
    return bindings


def clear_binding(scope: MutableMapping[str, object], name: str) -> bool:
    """Delete one binding unless it is structural.

    :param scope: Namespace to modify.
    :param name: Binding name.
    :returns: ``True`` when the binding was removed.
    """
    if name not in scope:
        return False
    if is_structural(scope[name]) is True:
        return False
    del scope[name]
    return True


def clear_all(scope: MutableMapping[str, object], symbol_filter: SymbolFilter) -> ClearReport:
    """Clear every non-protected user binding.

    :param scope: Namespace to modify.
    :param symbol_filter: Name predicate.
    :returns: Cleared and uncleared names.
    """
    report: ClearReport = ClearReport()
    for binding in list_user_bindings(scope, symbol_filter):
        if binding.is_protected is True:
            continue
        if clear_binding(scope, binding.name) is True:
            report.cleared.append(binding.name)
        else:
            report.uncleared.append(binding.name)
    return report
