from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Mapping


if TYPE_CHECKING:
    from prove.context import Context


CRITICAL = "critical"
PARALLEL = "parallel"
MODE_SPECIFIC = "mode-specific"
OPTIONAL = "optional"

# Execution order of stages.
STAGES = (CRITICAL, PARALLEL, MODE_SPECIFIC, OPTIONAL)


@dataclass(frozen=True)
class CheckResult:
    id: str
    ok: bool
    duration_ms: int = 0
    reason: str | None = None
    details: Mapping[str, Any] | None = None

    def with_duration(self, duration_ms: int) -> CheckResult:
        return CheckResult(id=self.id, ok=self.ok, duration_ms=duration_ms, reason=self.reason, details=self.details)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"id": self.id, "ok": self.ok, "duration_ms": self.duration_ms}
        if self.reason is not None:
            out["reason"] = self.reason
        if self.details is not None:
            out["details"] = dict(self.details)
        return out


# Results of checks that ran in earlier stages, keyed by check id.
PriorResults = Mapping[str, CheckResult]

CheckFn = Callable[["Context", PriorResults], Awaitable[CheckResult]]


@dataclass(frozen=True)
class CheckDefinition:
    id: str
    name: str
    stage: str
    run: CheckFn
    quick_mode: bool = False
    toggle: str | None = None
    modes: frozenset[str] | None = None
    description: str = ""

    def __post_init__(self) -> None:
        if self.stage not in STAGES:
            raise ValueError(f"unknown stage for check {self.id}: {self.stage}")


def passed(check_id: str, reason: str | None = None, **details: Any) -> CheckResult:
    return CheckResult(id=check_id, ok=True, reason=reason, details=details or None)


def failed(check_id: str, reason: str, **details: Any) -> CheckResult:
    return CheckResult(id=check_id, ok=False, reason=reason, details=details or None)


@dataclass
class CheckRegistry:
    """Ordered, id-unique collection of check definitions."""

    definitions: list[CheckDefinition] = field(default_factory=list)

    def register(self, definition: CheckDefinition) -> None:
        if any(d.id == definition.id for d in self.definitions):
            raise ValueError(f"duplicate check id: {definition.id}")
        self.definitions.append(definition)

    def stage(self, stage: str, *, quick: bool = False) -> list[CheckDefinition]:
        return [d for d in self.definitions if d.stage == stage and (d.quick_mode or not quick)]

    def __iter__(self):
        return iter(self.definitions)

    def __len__(self) -> int:
        return len(self.definitions)
