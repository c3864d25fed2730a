from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Mapping, Optional, Protocol, Sequence

from question_engine._compat import StrEnum
from question_engine.adapters.resources import EngineResources
from question_engine.contracts import (
    BUNDLE_KEY_PREFIX,
    EmptyDistribution,
    ExploreQuestion,
    HardConfirmQuestion,
    SessionState,
    SoftConfirmQuestion,
)
from question_engine.question_selection import build_used_attribute_keys
from question_engine.scoring import normalize

_MASS_TOLERANCE = 1e-9


class InvariantId(StrEnum):
    WEIGHTS_NON_NEGATIVE = "weights_non_negative.v1"
    PROBABILITY_MASS = "probability_mass.v1"
    NO_REPEATED_ATTRIBUTE = "no_repeated_attribute.v1"
    NO_CONSECUTIVE_HARD_CONFIRM = "no_consecutive_hard_confirm.v1"
    NO_REPEATED_REVEAL = "no_repeated_reveal.v1"


class Flow(StrEnum):
    CONTINUE = "continue"
    STOP = "stop"


class Validity(StrEnum):
    VALID = "valid"
    DEGRADED = "degraded"
    INVALID = "invalid"


@dataclass(frozen=True)
class InvariantOutcome:
    invariant_id: InvariantId
    passed: bool
    reason: str
    flow: Flow
    validity: Validity
    code: str
    evidence: Sequence[Mapping[str, Any]] = field(default_factory=tuple)
    details: Mapping[str, Any] = field(default_factory=dict)


class CheckContext(Protocol):
    scope: str
    state: SessionState
    resources: EngineResources


@dataclass(frozen=True)
class SessionCheckContext:
    scope: str
    state: SessionState
    resources: EngineResources


Checker = Callable[[CheckContext], InvariantOutcome]


def _ok(invariant_id: InvariantId, code: str, details: Optional[Mapping[str, Any]] = None) -> InvariantOutcome:
    detail_map = dict(details or {})
    reason = str(detail_map.get("message") or code)
    return InvariantOutcome(
        invariant_id=invariant_id,
        passed=True,
        reason=reason,
        flow=Flow.CONTINUE,
        validity=Validity.VALID,
        code=code,
        details=detail_map,
    )


def _fail(
    invariant_id: InvariantId,
    code: str,
    message: str,
    evidence: Sequence[Mapping[str, Any]],
    *,
    validity: Validity = Validity.INVALID,
) -> InvariantOutcome:
    return InvariantOutcome(
        invariant_id=invariant_id,
        passed=False,
        reason=message,
        flow=Flow.STOP,
        validity=validity,
        code=code,
        evidence=tuple(evidence),
        details={"message": message},
    )


def check_weights_non_negative(ctx: CheckContext) -> InvariantOutcome:
    bad = [
        {"kind": "weight", "candidate_id": w.candidate_id, "value": w.weight}
        for w in ctx.state.weights
        if not (w.weight >= 0.0) or math.isinf(w.weight)
    ]
    if bad:
        return _fail(
            InvariantId.WEIGHTS_NON_NEGATIVE,
            "negative_weight",
            "Every candidate weight must be finite and non-negative.",
            bad,
        )
    return _ok(InvariantId.WEIGHTS_NON_NEGATIVE, "weights_non_negative")


def check_probability_mass(ctx: CheckContext) -> InvariantOutcome:
    try:
        probabilities = normalize(ctx.state.weights)
    except EmptyDistribution as exc:
        return _fail(
            InvariantId.PROBABILITY_MASS,
            "empty_distribution",
            "Weights carry no normalizable mass.",
            ({"kind": "error", "value": str(exc)},),
            validity=Validity.DEGRADED,
        )
    total = math.fsum(p.probability for p in probabilities)
    if abs(total - 1.0) > _MASS_TOLERANCE:
        return _fail(
            InvariantId.PROBABILITY_MASS,
            "mass_not_unit",
            "Normalized probabilities must sum to 1.",
            ({"kind": "total", "value": total},),
        )
    return _ok(InvariantId.PROBABILITY_MASS, "probability_mass_unit", {"candidates": len(probabilities)})


def check_no_repeated_attribute(ctx: CheckContext) -> InvariantOutcome:
    history = ctx.state.history
    repeats: list[Mapping[str, Any]] = []
    for i, entry in enumerate(history):
        question = entry.question
        if isinstance(question, HardConfirmQuestion):
            continue
        if isinstance(question, ExploreQuestion):
            key = question.target_key
        elif isinstance(question, SoftConfirmQuestion):
            key = question.attribute_key
        else:
            continue
        used = build_used_attribute_keys(history[:i], ctx.resources)
        if key in used:
            repeats.append({"kind": "turn", "turn_index": entry.turn_index, "key": key})
            continue
        if not key.startswith(BUNDLE_KEY_PREFIX) and used & ctx.resources.taxonomy.synonym_group(key):
            repeats.append({"kind": "synonym", "turn_index": entry.turn_index, "key": key})
    if repeats:
        return _fail(
            InvariantId.NO_REPEATED_ATTRIBUTE,
            "attribute_repeated",
            "An attribute or a member of its synonym group was asked twice.",
            repeats,
        )
    return _ok(InvariantId.NO_REPEATED_ATTRIBUTE, "attributes_unique")


def check_no_consecutive_hard_confirm(ctx: CheckContext) -> InvariantOutcome:
    history = ctx.state.history
    pairs = [
        {"kind": "turns", "value": [prev.turn_index, cur.turn_index]}
        for prev, cur in zip(history, history[1:])
        if isinstance(prev.question, HardConfirmQuestion) and isinstance(cur.question, HardConfirmQuestion)
    ]
    if pairs:
        return _fail(
            InvariantId.NO_CONSECUTIVE_HARD_CONFIRM,
            "hard_confirm_repeated",
            "Hard confirm questions must not follow each other directly.",
            pairs,
        )
    return _ok(InvariantId.NO_CONSECUTIVE_HARD_CONFIRM, "hard_confirms_separated")


def check_no_repeated_reveal(ctx: CheckContext) -> InvariantOutcome:
    rejected: set[str] = set()
    repeats: list[Mapping[str, Any]] = []
    for record in ctx.state.reveals:
        if record.candidate_id in rejected:
            repeats.append({"kind": "reveal", "candidate_id": record.candidate_id, "after_question": record.after_question})
        if record.accepted is False:
            rejected.add(record.candidate_id)
    if repeats:
        return _fail(
            InvariantId.NO_REPEATED_REVEAL,
            "rejected_candidate_reoffered",
            "A candidate rejected at reveal was offered again.",
            repeats,
        )
    return _ok(InvariantId.NO_REPEATED_REVEAL, "reveals_unique", {"rejected": len(rejected)})


REGISTRY: dict[InvariantId, Checker] = {
    InvariantId.WEIGHTS_NON_NEGATIVE: check_weights_non_negative,
    InvariantId.PROBABILITY_MASS: check_probability_mass,
    InvariantId.NO_REPEATED_ATTRIBUTE: check_no_repeated_attribute,
    InvariantId.NO_CONSECUTIVE_HARD_CONFIRM: check_no_consecutive_hard_confirm,
    InvariantId.NO_REPEATED_REVEAL: check_no_repeated_reveal,
}


def default_check_context(state: SessionState, resources: EngineResources, *, scope: Optional[str] = None) -> SessionCheckContext:
    return SessionCheckContext(scope=scope or state.session_id, state=state, resources=resources)


def run_checkers(ctx: CheckContext, invariant_ids: Optional[Iterable[InvariantId]] = None) -> list[InvariantOutcome]:
    ids = list(invariant_ids) if invariant_ids is not None else list(REGISTRY)
    return [REGISTRY[invariant_id](ctx) for invariant_id in ids]
