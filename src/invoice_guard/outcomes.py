"""Outcome values returned by the save and settlement guards."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Sequence, Tuple, Union

from .constants import PromptKind
from .errors import BusinessRuleViolation


@dataclass(frozen=True)
class Prompt:
    """An advisory question the user must answer affirmatively to continue."""

    kind: PromptKind
    title: str
    details: Tuple[str, ...] = ()

    @property
    def message(self) -> str:
        if not self.details:
            return self.title
        return self.title + "\n\n" + "\n".join(self.details)


@dataclass(frozen=True)
class Approved:
    """Every rule passed; the persist call may be issued."""

    acknowledged: Tuple[Prompt, ...] = ()


@dataclass(frozen=True)
class Blocked:
    """A blocking rule failed; nothing may be sent to the store."""

    reason: BusinessRuleViolation

    @property
    def message(self) -> str:
        return str(self.reason)


@dataclass(frozen=True)
class NeedsConfirmation:
    """Blocking rules passed but the listed prompts need an explicit yes."""

    prompts: Tuple[Prompt, ...] = field(default_factory=tuple)


Outcome = Union[Approved, Blocked, NeedsConfirmation]

ConfirmCallback = Callable[[Sequence[Prompt]], bool]


def resolve(outcome: Outcome, confirm: ConfirmCallback) -> Outcome:
    """Settle a :class:`NeedsConfirmation` by asking ``confirm``.

    ``confirm`` receives every prompt at once, in presentation order, and
    must return ``True`` to continue. Any other answer, including a
    dismissed dialog reported as ``False``/``None``, keeps the outcome
    unapproved. ``Approved`` and ``Blocked`` pass through unchanged.
    """
    if not isinstance(outcome, NeedsConfirmation):
        return outcome
    if confirm(outcome.prompts) is True:
        return Approved(acknowledged=outcome.prompts)
    return outcome


def is_approved(outcome: Outcome) -> bool:
    return isinstance(outcome, Approved)


__all__ = [
    "Prompt",
    "Approved",
    "Blocked",
    "NeedsConfirmation",
    "Outcome",
    "ConfirmCallback",
    "resolve",
    "is_approved",
]
