from __future__ import annotations

import logging
import math
import random
from collections.abc import Iterable
from dataclasses import dataclass
from statistics import mean
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from question_engine.adapters.resources import EngineResources
from question_engine.belief_update import question_holders
from question_engine.config import EngineConfig
from question_engine.contracts import (
    Answer,
    EmptyDistribution,
    ExploreQuestion,
    HardConfirmQuestion,
    InvalidTransition,
    QuestionKind,
    SessionOutcome,
    SoftConfirmQuestion,
)
from question_engine.engine import (
    AskQuestion,
    InferenceSession,
    OfferReveal,
    SessionEnded,
    current_probabilities,
)
from question_engine.scoring import confidence, rank

logger = logging.getLogger(__name__)


class NoiseRates(BaseModel):
    """Per-kind probability that the simulated respondent flips yes and no."""

    model_config = ConfigDict(extra="forbid", frozen=True)
    explore: float = Field(default=0.0, ge=0.0, le=1.0)
    soft_confirm: float = Field(default=0.0, ge=0.0, le=1.0)
    hard_confirm: float = Field(default=0.0, ge=0.0, le=1.0)

    def rate_for(self, kind: QuestionKind) -> float:
        if kind == QuestionKind.SOFT_CONFIRM:
            return self.soft_confirm
        if kind == QuestionKind.HARD_CONFIRM:
            return self.hard_confirm
        return self.explore


@dataclass(frozen=True)
class SimulationStep:
    turn_index: int
    kind: str
    key: str
    answer: Optional[Answer]
    noisy: bool
    confidence_before: float
    confidence_after: float
    top_candidate: Optional[str]
    holder_mass: Optional[float] = None
    reveal_accepted: Optional[bool] = None


@dataclass(frozen=True)
class SimulationResult:
    target_id: str
    session_id: str
    outcome: SessionOutcome
    reason: str
    questions_asked: int
    reveal_misses: int
    steps: list[SimulationStep]
    invariant_failures: list[str]

    @property
    def success(self) -> bool:
        return self.outcome == SessionOutcome.SUCCESS


def _question_key(question: Any) -> str:
    if isinstance(question, ExploreQuestion):
        return question.target_key
    if isinstance(question, SoftConfirmQuestion):
        return question.attribute_key
    if isinstance(question, HardConfirmQuestion):
        return f"{question.fact.value}:{question.value}"
    return str(question)


def _safe_confidence(session: InferenceSession) -> float:
    try:
        return confidence(current_probabilities(session.state))
    except EmptyDistribution:
        return 0.0


def _top(session: InferenceSession) -> Optional[str]:
    try:
        ranked = rank(current_probabilities(session.state))
    except EmptyDistribution:
        return None
    return ranked[0].candidate_id if ranked else None


def simulate_session(
    target_id: str,
    config: EngineConfig,
    resources: EngineResources,
    noise: Optional[NoiseRates] = None,
    seed: int = 0,
    *,
    audit: bool = True,
) -> SimulationResult:
    """
    Play one session against a known target, answering from ground truth and
    flipping yes/no at the configured per-kind noise rates.
    """
    noise = noise or NoiseRates()
    rng = random.Random(seed)
    session = InferenceSession(resources, config, session_id=f"sim:{target_id}:{seed}")
    if target_id not in {w.candidate_id for w in session.state.weights}:
        raise KeyError(f"target {target_id!r} is not in the catalog")

    steps: list[SimulationStep] = []
    failures: list[str] = []
    step_limit = config.flow.max_questions + config.flow.max_reveal_misses + 3

    for _ in range(step_limit):
        before = _safe_confidence(session)
        action = session.next_action()

        if isinstance(action, SessionEnded):
            break

        if isinstance(action, OfferReveal):
            accepted = action.candidate_id == target_id
            session.reveal(accepted)
            steps.append(
                SimulationStep(
                    turn_index=session.state.question_count,
                    kind="reveal",
                    key=action.candidate_id,
                    answer=None,
                    noisy=False,
                    confidence_before=before,
                    confidence_after=before if session.is_terminated else _safe_confidence(session),
                    top_candidate=action.candidate_id,
                    reveal_accepted=accepted,
                )
            )
            continue

        if not isinstance(action, AskQuestion):
            raise InvalidTransition(f"unexpected engine action {type(action).__name__}")
        question = action.question
        all_ids = [w.candidate_id for w in session.state.weights]
        holders = question_holders(question, all_ids, config, resources)
        prob_map = {p.candidate_id: p.probability for p in current_probabilities(session.state)}
        holder_mass = math.fsum(prob_map.get(cid, 0.0) for cid in holders)

        truthful = Answer.YES if target_id in holders else Answer.NO
        noisy = rng.random() < noise.rate_for(question.kind)
        answer = (Answer.NO if truthful == Answer.YES else Answer.YES) if noisy else truthful
        session.answer(answer)

        steps.append(
            SimulationStep(
                turn_index=action.turn_index,
                kind=question.kind.value,
                key=_question_key(question),
                answer=answer,
                noisy=noisy,
                confidence_before=before,
                confidence_after=_safe_confidence(session),
                top_candidate=_top(session),
                holder_mass=holder_mass,
            )
        )
        if audit:
            failures.extend(
                f"turn {action.turn_index}: {o.invariant_id.value}: {o.code}" for o in session.audit() if not o.passed
            )
    else:
        raise RuntimeError(f"simulation for {target_id!r} did not terminate within {step_limit} steps")

    state = session.state
    result = SimulationResult(
        target_id=target_id,
        session_id=state.session_id,
        outcome=state.outcome or SessionOutcome.FAILURE,
        reason=state.termination_reason.value if state.termination_reason else "unknown",
        questions_asked=state.question_count,
        reveal_misses=state.reveal_misses,
        steps=steps,
        invariant_failures=failures,
    )
    logger.info(
        "simulated %s: %s in %d questions (%d misses)",
        target_id,
        result.outcome.value,
        result.questions_asked,
        result.reveal_misses,
    )
    return result


def run_batch(
    target_ids: Iterable[str],
    config: EngineConfig,
    resources: EngineResources,
    noise: Optional[NoiseRates] = None,
    seed: int = 0,
) -> list[SimulationResult]:
    return [
        simulate_session(target_id, config, resources, noise, seed + offset)
        for offset, target_id in enumerate(target_ids)
    ]


def summarize(results: list[SimulationResult]) -> dict[str, float]:
    if not results:
        return {
            "sessions": 0,
            "success_rate": 0.0,
            "mean_questions": 0.0,
            "mean_questions_on_success": 0.0,
            "mean_reveal_misses": 0.0,
            "noisy_answer_rate": 0.0,
            "invariant_failures": 0,
        }

    successes = [r for r in results if r.success]
    answered = [s for r in results for s in r.steps if s.answer is not None]
    noisy = sum(1 for s in answered if s.noisy)
    return {
        "sessions": len(results),
        "success_rate": round(len(successes) / len(results), 4),
        "mean_questions": round(mean(r.questions_asked for r in results), 4),
        "mean_questions_on_success": round(mean(r.questions_asked for r in successes), 4) if successes else 0.0,
        "mean_reveal_misses": round(mean(r.reveal_misses for r in results), 4),
        "noisy_answer_rate": round(noisy / len(answered), 4) if answered else 0.0,
        "invariant_failures": sum(len(r.invariant_failures) for r in results),
    }
