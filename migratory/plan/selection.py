"""Selection of the migrations to run.

A :class:`Selection` describes what the caller wants ("apply everything",
"roll back the last two", ...). :func:`resolve` turns it into the concrete
ordered list of migrations to run, given the plan and the names recorded
as applied in the state.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Sequence

from migratory.core.exceptions import (
    IrreversibleMigrationError,
    StateDriftError,
    TargetNotFoundError,
)
from migratory.plan.base import Direction, PlanEntry

logger = logging.getLogger(__name__)


class SelectionKind(str, Enum):
    APPLY_ALL = "apply-all"
    APPLY_COUNT = "apply-count"
    APPLY_TO = "apply-to"
    ROLLBACK_COUNT = "rollback-count"
    ROLLBACK_TO = "rollback-to"
    ROLLBACK_ALL = "rollback-all"


_COUNTED = (SelectionKind.APPLY_COUNT, SelectionKind.ROLLBACK_COUNT)
_TARGETED = (SelectionKind.APPLY_TO, SelectionKind.ROLLBACK_TO)
_REVERSE = (
    SelectionKind.ROLLBACK_COUNT,
    SelectionKind.ROLLBACK_TO,
    SelectionKind.ROLLBACK_ALL,
)


@dataclass(frozen=True)
class Selection:
    """Which migrations to run and in which direction.

    Use the constructors rather than instantiating directly:

        Selection.apply_all()
        Selection.apply_next(2)
        Selection.apply_to("003-add-index")
        Selection.rollback(1)
        Selection.rollback_to("002-add-users")
        Selection.rollback_all()
    """

    kind: SelectionKind
    count: int | None = None
    target: str | None = None

    def __post_init__(self):
        if self.kind in _COUNTED:
            if not isinstance(self.count, int) or isinstance(self.count, bool) or self.count < 0:
                raise ValueError(
                    f"{self.kind.value} selection needs a non-negative count, got {self.count!r}"
                )
        if self.kind in _TARGETED and not self.target:
            raise ValueError(f"{self.kind.value} selection needs a target migration name")

    @classmethod
    def apply_all(cls) -> "Selection":
        return cls(SelectionKind.APPLY_ALL)

    @classmethod
    def apply_next(cls, count: int) -> "Selection":
        return cls(SelectionKind.APPLY_COUNT, count=count)

    @classmethod
    def apply_to(cls, target: str) -> "Selection":
        return cls(SelectionKind.APPLY_TO, target=target)

    @classmethod
    def rollback(cls, count: int) -> "Selection":
        return cls(SelectionKind.ROLLBACK_COUNT, count=count)

    @classmethod
    def rollback_to(cls, target: str) -> "Selection":
        return cls(SelectionKind.ROLLBACK_TO, target=target)

    @classmethod
    def rollback_all(cls) -> "Selection":
        return cls(SelectionKind.ROLLBACK_ALL)

    @property
    def direction(self) -> Direction:
        return Direction.DOWN if self.kind in _REVERSE else Direction.UP

    def __str__(self) -> str:
        if self.kind in _COUNTED:
            return f"{self.kind.value} {self.count}"
        if self.kind in _TARGETED:
            return f"{self.kind.value} {self.target}"
        return self.kind.value


@dataclass
class Resolution:
    """The concrete migrations a selection resolved to.

    Attributes:
        direction: Whether the steps run ``up`` or ``down``
        steps: Migrations to run, in execution order
        selection: The selection this was resolved from
    """

    direction: Direction
    steps: list[PlanEntry] = field(default_factory=list)
    selection: Selection | None = None

    @property
    def names(self) -> list[str]:
        return [step.name for step in self.steps]

    @property
    def is_noop(self) -> bool:
        return not self.steps

    def describe(self) -> str:
        """Render the resolution as text, one migration per line."""
        if not self.steps:
            return "Nothing to do, the state is already up to date"
        arrow = "↑" if self.direction is Direction.UP else "↓"
        lines = [f"{len(self.steps)} migration(s) to run {self.direction.value}:"]
        for step in self.steps:
            lines.append(f"  {arrow} #{step.index} {step.name}")
        return "\n".join(lines)


def check_prefix(plan: Sequence[PlanEntry], applied: Sequence[str]) -> None:
    """Ensure the applied names are a prefix of the plan order.

    Raises:
        StateDriftError: On the first position where they disagree
    """
    for i, name in enumerate(applied):
        expected = plan[i].name if i < len(plan) else None
        if expected != name:
            logger.error(
                f"Applied migrations [{', '.join(applied)}] are inconsistent with "
                f"plan [{', '.join(e.name for e in plan)}] at position {i}"
            )
            raise StateDriftError(i, expected, name)


def resolve(
    plan: Sequence[PlanEntry],
    applied: Sequence[str],
    selection: Selection,
) -> Resolution:
    """Resolve a selection against the plan and the applied state.

    Args:
        plan: Plan entries in plan order
        applied: Names recorded as applied, oldest first
        selection: What the caller asked for

    Returns:
        The direction and the ordered migrations to run

    Raises:
        StateDriftError: If ``applied`` is not a prefix of the plan
        TargetNotFoundError: If the selection names an unknown migration
        IrreversibleMigrationError: If a rollback includes a migration
            without ``down``
    """
    check_prefix(plan, applied)

    known = {entry.name for entry in plan}
    if selection.target is not None and selection.target not in known:
        raise TargetNotFoundError(selection.target, [e.name for e in plan])

    completed = list(plan[: len(applied)])
    pending = list(plan[len(applied):])
    kind = selection.kind

    if selection.direction is Direction.UP:
        if kind is SelectionKind.APPLY_ALL:
            steps = pending
        elif kind is SelectionKind.APPLY_COUNT:
            steps = pending[: selection.count]
        else:
            position = _position(pending, selection.target)
            # Target already applied: nothing left to do
            steps = [] if position is None else pending[: position + 1]
        return Resolution(Direction.UP, steps, selection)

    tail = completed[::-1]
    if kind is SelectionKind.ROLLBACK_ALL:
        steps = tail
    elif kind is SelectionKind.ROLLBACK_COUNT:
        steps = tail[: selection.count]
    else:
        position = _position(tail, selection.target)
        # Target not applied: it is already rolled back
        steps = [] if position is None else tail[: position + 1]

    irreversible = [step.name for step in steps if not step.reversible]
    if irreversible:
        raise IrreversibleMigrationError(irreversible)

    return Resolution(Direction.DOWN, steps, selection)


def _position(entries: Sequence[PlanEntry], name: str) -> int | None:
    for i, entry in enumerate(entries):
        if entry.name == name:
            return i
    return None
