"""Field validation for form-based stages.

Each field owns an ordered list of :class:`Rule` objects. Interaction
(change/blur) validates leniently, allowing empty values; the pre-submit
pass validates strictly and acts as a barrier: aggregate validity is only
read once every validator issued for that pass has resolved.

Every validation call takes the next per-field generation number. A result
is applied only if no call with a higher generation has completed for the
same field, so a slow validator can never overwrite a newer verdict.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import re
from typing import Any, Awaitable, Callable, Iterable, Sequence, Union

import msgspec
from msgspec import structs

from .exceptions import ValidationError
from .models import FieldState
from .password import PasswordComplexity, score_password_async

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^\S+@\S+\.\S+$")


class RuleContext(msgspec.Struct, frozen=True):
    value: str
    allow_empty: bool
    focused: bool = False
    values: dict[str, str] = msgspec.field(default_factory=dict)
    detail: Any = None


class Verdict(msgspec.Struct, frozen=True):
    """Outcome of one rule check, with optional output for the caller."""

    passed: bool
    detail: Any = None


RuleTest = Callable[[RuleContext], Union[bool, Verdict, Awaitable[Union[bool, Verdict]]]]
Message = Union[str, Callable[[RuleContext], Union[str, None]], None]
FieldValidatedCallback = Callable[[str, bool, Union[str, None]], Any]


class ValidationResult(msgspec.Struct, frozen=True):
    valid: bool
    message: str | None = None
    rule: str | None = None
    detail: Any = None


class Rule:
    """A single named check with optional feedback messages."""

    def __init__(self, key: str, test: RuleTest, *, valid: Message = None, invalid: Message = None) -> None:
        self.key = key
        self.test = test
        self.valid = valid
        self.invalid = invalid

    async def check(self, context: RuleContext) -> Verdict:
        outcome = self.test(context)
        if inspect.isawaitable(outcome):
            outcome = await outcome
        if isinstance(outcome, Verdict):
            return outcome
        return Verdict(passed=bool(outcome))

    @staticmethod
    def render(message: Message, context: RuleContext) -> str | None:
        if message is None or isinstance(message, str):
            return message
        return message(context)


class FieldSpec:
    """Declaration of one form field and its rules."""

    def __init__(self, field_id: str, rules: Iterable[Rule] = (), *, initial: str = "") -> None:
        self.field_id = field_id
        self.rules = tuple(rules)
        self.initial = initial

    async def run(self, context: RuleContext) -> ValidationResult:
        if not context.value and context.allow_empty:
            return ValidationResult(valid=False)
        # Messages are rendered from this call's verdicts only.
        passed: list[tuple[Rule, Verdict]] = []
        detail = None
        for rule in self.rules:
            verdict = await rule.check(context)
            if verdict.detail is not None:
                detail = verdict.detail
            if not verdict.passed:
                message = Rule.render(rule.invalid, structs.replace(context, detail=verdict.detail))
                return ValidationResult(valid=False, message=message, rule=rule.key, detail=detail)
            passed.append((rule, verdict))
        for rule, verdict in reversed(passed):
            if rule.valid is not None:
                message = Rule.render(rule.valid, structs.replace(context, detail=verdict.detail))
                return ValidationResult(valid=True, message=message, detail=detail)
        return ValidationResult(valid=True, detail=detail)


def required(message: str) -> Rule:
    return Rule("required", lambda ctx: ctx.allow_empty or bool(ctx.value), invalid=message)


def looks_like_email(message: str) -> Rule:
    return Rule("email", lambda ctx: not ctx.value or EMAIL_PATTERN.match(ctx.value) is not None, invalid=message)


def matches(other_field: str, message: str) -> Rule:
    return Rule("match", lambda ctx: not ctx.value or ctx.value == ctx.values.get(other_field), invalid=message)


class PasswordComplexityRule(Rule):
    """Score the password and gate on ``min_score`` unless unsafe passwords are allowed.

    The score travels as the verdict's ``detail`` and lands in
    :attr:`FieldState.detail` only when the validation is applied, so a
    strength meter never shows the score of a superseded value.
    """

    def __init__(
        self,
        *,
        min_score: int = 3,
        allow_unsafe: bool = False,
        scorer: Callable[[str], Awaitable[PasswordComplexity]] = score_password_async,
    ) -> None:
        super().__init__("complexity", self._test, valid=self._valid_message, invalid=self._invalid_message)
        self.min_score = min_score
        self.allow_unsafe = allow_unsafe
        self.scorer = scorer

    def is_safe(self, complexity: PasswordComplexity) -> bool:
        return complexity.score >= self.min_score

    async def _test(self, context: RuleContext) -> Verdict:
        if not context.value:
            return Verdict(passed=False)
        complexity = await self.scorer(context.value)
        return Verdict(passed=self.allow_unsafe or self.is_safe(complexity), detail=complexity)

    def _valid_message(self, context: RuleContext) -> str:
        if not self.is_safe(context.detail):
            return "Password is allowed, but unsafe"
        return "Nice, strong password!"

    def _invalid_message(self, context: RuleContext) -> str | None:
        complexity: PasswordComplexity | None = context.detail
        if complexity is None:
            return None
        feedback = complexity.feedback
        if feedback.warning:
            return feedback.warning
        if feedback.suggestions:
            return feedback.suggestions[0]
        return "Keep going..."


class ValidationOrchestrator:
    """Track per-field validity and gate submission on it."""

    def __init__(
        self,
        fields: Sequence[FieldSpec],
        *,
        display_order: Sequence[str] | None = None,
        on_field_validated: FieldValidatedCallback | None = None,
    ) -> None:
        self._specs: dict[str, FieldSpec] = {}
        for spec in fields:
            if spec.field_id in self._specs:
                raise ValueError(f"Duplicate field {spec.field_id!r}")
            self._specs[spec.field_id] = spec
        order = tuple(display_order) if display_order is not None else tuple(self._specs)
        if sorted(order) != sorted(self._specs):
            raise ValueError("display_order must list every declared field exactly once")
        self._order = order
        self._states = {fid: FieldState(field_id=fid, value=spec.initial) for fid, spec in self._specs.items()}
        self._issued = {fid: 0 for fid in self._specs}
        self._focused: str | None = None
        self._pending: set[asyncio.Task[ValidationResult]] = set()
        self._active = True
        self.on_field_validated = on_field_validated

    @property
    def active(self) -> bool:
        return self._active

    @property
    def display_order(self) -> tuple[str, ...]:
        return self._order

    @property
    def focused(self) -> str | None:
        return self._focused

    def has_field(self, field_id: str) -> bool:
        return field_id in self._specs

    def state(self, field_id: str) -> FieldState:
        self._spec(field_id)
        return self._states[field_id]

    def values(self) -> dict[str, str]:
        return {fid: state.value for fid, state in self._states.items()}

    def value(self, field_id: str) -> str:
        return self.state(field_id).value

    def set_value(self, field_id: str, value: str) -> None:
        self._spec(field_id)
        if not self._active:
            return
        self._states[field_id] = structs.replace(self._states[field_id], value=value)

    def focus(self, field_id: str) -> None:
        self._spec(field_id)
        if not self._active:
            return
        self._set_focus(field_id)

    async def on_change(self, field_id: str, value: str) -> ValidationResult:
        """Record a new value and validate it leniently while the field has focus."""

        self.set_value(field_id, value)
        if self._active and self._focused is None:
            self._set_focus(field_id)
        return await self.validate(field_id, allow_empty=True, focused=self._focused == field_id)

    async def on_blur(self, field_id: str | None = None) -> ValidationResult | None:
        target = field_id or self._focused
        if target is None:
            return None
        self._spec(target)
        if self._active and self._focused == target:
            self._set_focus(None)
        return await self.validate(target, allow_empty=True)

    def blur(self) -> asyncio.Task[ValidationResult] | None:
        """Unfocus the focused field and validate it leniently in the background."""

        target = self._focused
        if target is None or not self._active:
            return None
        self._set_focus(None)
        generation = self._next_generation(target)
        task = asyncio.ensure_future(self._run(target, generation, allow_empty=True, focused=False))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        task.add_done_callback(_log_task_error)
        return task

    async def validate(self, field_id: str, *, allow_empty: bool, focused: bool = False) -> ValidationResult:
        self._spec(field_id)
        generation = self._next_generation(field_id)
        return await self._run(field_id, generation, allow_empty=allow_empty, focused=focused)

    def all_valid(self) -> bool:
        """Return ``True`` if every field was valid the last time it was validated."""

        return all(state.valid for state in self._states.values())

    def first_invalid(self, field_ids: Iterable[str] | None = None) -> str | None:
        for field_id in field_ids if field_ids is not None else self._order:
            if not self._states[field_id].valid:
                return field_id
        return None

    async def verify_before_submit(self) -> bool:
        """Run the strict pre-submit pass and report whether submission may proceed."""

        if not self._active:
            return False
        # Lenient blur validation first, then strict validation for every field.
        self.blur()
        strict = [
            self._run(field_id, self._next_generation(field_id), allow_empty=False, focused=False)
            for field_id in self._order
        ]
        await asyncio.gather(*strict, *tuple(self._pending))
        if not self._active:
            return False
        if self.all_valid():
            return True
        invalid = self.first_invalid()
        if invalid is None:
            return True
        self._set_focus(invalid)
        await self.validate(invalid, allow_empty=False, focused=True)
        return False

    async def require_valid(self) -> dict[str, str]:
        """Return the field values, or raise :class:`ValidationError` for the first invalid field."""

        if not await self.verify_before_submit():
            field_id = self.first_invalid() or self._order[0]
            raise ValidationError(field_id, self._states[field_id].error_message)
        return self.values()

    def dispose(self) -> None:
        """Mark the form inactive; validations still in flight resolve without effect."""

        self._active = False

    def _spec(self, field_id: str) -> FieldSpec:
        try:
            return self._specs[field_id]
        except KeyError as exc:
            raise KeyError(f"Unknown field {field_id!r}") from exc

    def _next_generation(self, field_id: str) -> int:
        self._issued[field_id] += 1
        return self._issued[field_id]

    def _set_focus(self, field_id: str | None) -> None:
        previous = self._focused
        if previous == field_id:
            return
        if previous is not None:
            self._states[previous] = structs.replace(self._states[previous], focused=False)
        if field_id is not None:
            self._states[field_id] = structs.replace(self._states[field_id], focused=True)
        self._focused = field_id

    async def _run(self, field_id: str, generation: int, *, allow_empty: bool, focused: bool) -> ValidationResult:
        value = self._states[field_id].value
        context = RuleContext(value=value, allow_empty=allow_empty, focused=focused, values=self.values())
        result = await self._specs[field_id].run(context)
        if not self._active:
            return result
        current = self._states[field_id]
        if current.validation_generation > generation:
            logger.debug(
                "Discarding stale validation of %s (generation %d < %d)",
                field_id,
                generation,
                current.validation_generation,
            )
            return result
        self._states[field_id] = structs.replace(
            current,
            last_validated_value=value,
            valid=result.valid,
            error_message=None if result.valid else result.message,
            validation_generation=generation,
            detail=result.detail,
        )
        if self.on_field_validated is not None:
            self.on_field_validated(field_id, result.valid, result.message)
        return result


def _log_task_error(task: asyncio.Task[Any]) -> None:
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.error("Background validation failed", exc_info=error)


__all__ = [
    "EMAIL_PATTERN",
    "FieldSpec",
    "PasswordComplexityRule",
    "Rule",
    "RuleContext",
    "ValidationOrchestrator",
    "ValidationResult",
    "Verdict",
    "looks_like_email",
    "matches",
    "required",
]
