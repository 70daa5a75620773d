"""Clarification sub-dialog: one missing required field asked at a time.

The reply to a clarification is never re-classified; it is read as the
value of the pending field. Once nothing required is missing the order is
complete and goes to dispatch.
"""

from dataclasses import dataclass, replace
from typing import Literal

from .notifications import FIELD_OPTIONS, interpret_answer, is_cancel
from .order_params import MAX_TOPIC_LENGTH, OrderParams, normalize_value

StepKind = Literal["ask", "complete", "cancel"]


@dataclass(frozen=True)
class ClarificationStep:
    kind: StepKind
    params: OrderParams
    field: str | None = None


def plan_next(params: OrderParams, required: tuple[str, ...]) -> ClarificationStep:
    """Ask for the first missing required field, or report the order complete."""
    missing = params.missing(required)
    if missing:
        return ClarificationStep(kind="ask", params=params, field=missing[0])
    return ClarificationStep(kind="complete", params=params)


def answer_value(field_name: str, answer: str) -> str | None:
    """Offered option if the reply matches one, else the reply as free text."""
    chosen = interpret_answer(answer, FIELD_OPTIONS.get(field_name, ()))
    canonical = normalize_value(field_name, chosen)
    if canonical:
        return canonical
    free_text = chosen.strip()
    return free_text[:MAX_TOPIC_LENGTH] or None


def apply_reply(
    params: OrderParams,
    pending_field: str,
    answer: str,
    required: tuple[str, ...],
) -> ClarificationStep:
    """Fill pending_field from the reply and decide the next step."""
    if is_cancel(answer):
        return ClarificationStep(kind="cancel", params=params, field=pending_field)

    value = answer_value(pending_field, answer)
    if value is None:
        # Empty reply: the same question stays pending
        return ClarificationStep(kind="ask", params=params, field=pending_field)

    return plan_next(replace(params, **{pending_field: value}), required)
