"""Errors raised while loading and resolving a composition.

Every error is fatal to the current run: the engine is deterministic, so the
only remedy is to fix the configuration and run again.
"""


class InfragraphError(Exception):
    """Base exception for all infragraph errors.

    ``stage`` is filled in by the pipeline with the stage that aborted.
    """

    stage: str | None = None


class ConfigError(InfragraphError):
    """Raised when a composition or module file is malformed or missing."""


class CompositionError(InfragraphError):
    """Base exception for errors raised by the resolution pipeline."""


class MissingRequiredValue(CompositionError):
    """Raised when a variable or input has no default and no value was supplied."""

    def __init__(self, name: str, owner: str | None = None) -> None:
        self.name = name
        self.owner = owner
        where = f" of module {owner!r}" if owner else ""
        super().__init__(f"missing required value for {name!r}{where}")


class ArityMismatch(CompositionError):
    """Raised when a list value has the wrong number of elements."""

    def __init__(self, name: str, expected: int, actual: int, owner: str | None = None, reason: str = "") -> None:
        self.name = name
        self.expected = expected
        self.actual = actual
        self.owner = owner
        where = f" of module {owner!r}" if owner else ""
        detail = f" ({reason})" if reason else ""
        super().__init__(f"{name!r}{where} expects {expected} element(s), got {actual}{detail}")


class CycleDetected(CompositionError):
    """Raised when module references form a cycle. ``cycle`` lists the full path."""

    def __init__(self, cycle: list[str]) -> None:
        self.cycle = list(cycle)
        super().__init__("reference cycle detected: " + " -> ".join(self.cycle))

    @property
    def modules(self) -> list[str]:
        """Distinct modules participating in the cycle, in path order."""
        return self.cycle[:-1] if len(self.cycle) > 1 and self.cycle[0] == self.cycle[-1] else list(self.cycle)


class UnresolvedReference(CompositionError):
    """Raised when an expression or binding names a module, output, input or variable that does not exist."""


class UnknownOutput(CompositionError):
    """Raised when a projected output names a module or output missing after resolution."""

    def __init__(self, module: str, output: str) -> None:
        self.module = module
        self.output = output
        super().__init__(f"unknown output {module}.{output}")


class TypeMismatch(CompositionError):
    """Raised when a value does not match its declared type or an expression's operand type."""


class InvalidExpression(CompositionError):
    """Raised when an expression is malformed or not permitted where it appears."""


__all__ = [
    "ArityMismatch",
    "CompositionError",
    "ConfigError",
    "CycleDetected",
    "InfragraphError",
    "InvalidExpression",
    "MissingRequiredValue",
    "TypeMismatch",
    "UnknownOutput",
    "UnresolvedReference",
]
