# question_engine/engine.py
from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, replace
from typing import Optional, Union

from question_engine.adapters.catalog import InclusionRule, filter_candidates
from question_engine.adapters.resources import EngineResources
from question_engine.belief_update import apply_reveal_penalty, parse_answer, process_answer
from question_engine.config import EngineConfig
from question_engine.contracts import (
    Answer,
    Candidate,
    EmptyDistribution,
    ExploreQuestion,
    HardConfirmQuestion,
    HistoryEntry,
    InvalidTransition,
    ProbabilityEntry,
    RevealRecord,
    SessionAggregates,
    SessionOutcome,
    SessionPhase,
    SessionState,
    SoftConfirmQuestion,
    TerminationReason,
)
from question_engine.invariants import InvariantOutcome, default_check_context, run_checkers
from question_engine.question_selection import negative_streak, select_next_question
from question_engine.scoring import initial_weights, normalize, rank, session_aggregates
from question_engine.stable_ids import derive_question_id, derive_session_id

logger = logging.getLogger(__name__)

AnyQuestion = Union[ExploreQuestion, SoftConfirmQuestion, HardConfirmQuestion]


# ------------------------------------------------------------------------------
# Actions
# ------------------------------------------------------------------------------


@dataclass(frozen=True)
class AskQuestion:
    question: AnyQuestion
    question_id: str
    turn_index: int


@dataclass(frozen=True)
class OfferReveal:
    candidate_id: str
    probability: float
    terminal: bool = False


@dataclass(frozen=True)
class SessionEnded:
    outcome: SessionOutcome
    reason: TerminationReason
    candidate_id: Optional[str] = None


EngineAction = Union[AskQuestion, OfferReveal, SessionEnded]


# ------------------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------------------


def _terminate(state: SessionState, outcome: SessionOutcome, reason: TerminationReason) -> SessionState:
    logger.info(
        "session %s terminated: %s (%s) after %d questions, %d reveal misses",
        state.session_id,
        outcome.value,
        reason.value,
        state.question_count,
        state.reveal_misses,
    )
    return replace(
        state,
        phase=SessionPhase.TERMINATED,
        outcome=outcome,
        termination_reason=reason,
        pending_question=None,
        pending_reveal=None,
    )


def _ended(state: SessionState) -> SessionEnded:
    accepted = [r.candidate_id for r in state.reveals if r.accepted]
    return SessionEnded(
        outcome=state.outcome or SessionOutcome.FAILURE,
        reason=state.termination_reason or TerminationReason.NO_CANDIDATE,
        candidate_id=accepted[-1] if accepted else None,
    )


def _offer(state: SessionState, entry: ProbabilityEntry, *, terminal: bool) -> tuple[SessionState, OfferReveal]:
    record = RevealRecord(
        candidate_id=entry.candidate_id,
        probability=entry.probability,
        after_question=state.question_count,
        terminal=terminal,
    )
    logger.debug(
        "session %s: offering %s (p=%.4f, terminal=%s)",
        state.session_id,
        entry.candidate_id,
        entry.probability,
        terminal,
    )
    new_state = replace(state, phase=SessionPhase.AWAITING_REVEAL, pending_reveal=record)
    return new_state, OfferReveal(candidate_id=entry.candidate_id, probability=entry.probability, terminal=terminal)


def current_probabilities(state: SessionState) -> tuple[ProbabilityEntry, ...]:
    return normalize(state.weights)


def current_aggregates(state: SessionState, config: EngineConfig) -> SessionAggregates:
    params = config.flow.effective_confirm_threshold
    return session_aggregates(
        current_probabilities(state),
        minimum=params.min,
        maximum=params.max,
        divisor=params.divisor,
        negative_streak=negative_streak(state.history),
        reveal_misses=state.reveal_misses,
    )


# ------------------------------------------------------------------------------
# Transitions
# ------------------------------------------------------------------------------


def start_session(
    candidates: Iterable[Candidate],
    config: EngineConfig,
    *,
    include: Optional[InclusionRule] = None,
    session_id: Optional[str] = None,
) -> SessionState:
    eligible = filter_candidates(candidates, include)
    weights = initial_weights(eligible, config.algo.alpha, use_bonus=config.algo.use_popularity_bonus)
    sid = session_id or derive_session_id((c.candidate_id for c in eligible), seed=config.seed)
    state = SessionState(session_id=sid, phase=SessionPhase.AWAITING_QUESTION, weights=weights)
    logger.debug("session %s started with %d candidates", sid, len(weights))
    if not weights:
        return _terminate(state, SessionOutcome.FAILURE, TerminationReason.NO_CANDIDATE)
    return state


def next_action(
    state: SessionState,
    config: EngineConfig,
    resources: EngineResources,
) -> tuple[SessionState, EngineAction]:
    """
    Decide what the caller should do next. Pending questions and reveals are
    re-emitted unchanged, so calling this twice without input is harmless.
    """
    if state.phase == SessionPhase.TERMINATED:
        return state, _ended(state)

    if state.phase == SessionPhase.AWAITING_ANSWER:
        pending = state.history[-1]
        return state, AskQuestion(question=pending.question, question_id=pending.question_id, turn_index=pending.turn_index)

    if state.phase == SessionPhase.AWAITING_REVEAL:
        record = state.pending_reveal
        if record is None:
            raise InvalidTransition("awaiting a reveal decision without a pending reveal")
        return state, OfferReveal(candidate_id=record.candidate_id, probability=record.probability, terminal=record.terminal)

    try:
        probabilities = normalize(state.weights)
    except EmptyDistribution as exc:
        logger.warning("session %s: %s", state.session_id, exc)
        state = _terminate(state, SessionOutcome.FAILURE, TerminationReason.EMPTY_DISTRIBUTION)
        return state, _ended(state)

    remaining = [p for p in rank(probabilities) if p.candidate_id not in state.rejected_ids]
    if not remaining:
        state = _terminate(state, SessionOutcome.FAILURE, TerminationReason.NO_CANDIDATE)
        return state, _ended(state)
    top = remaining[0]

    if state.question_count >= config.flow.max_questions:
        return _offer(state, top, terminal=True)

    if top.probability >= config.confirm.reveal_threshold:
        return _offer(state, top, terminal=False)

    turn_index = state.question_count + 1
    question = select_next_question(
        state.weights,
        probabilities,
        turn_index,
        state.history,
        config,
        resources,
        after_reveal_miss=state.last_reveal_missed,
        rejected_ids=state.rejected_ids,
    )
    if question is None:
        logger.info("session %s: no askable question at turn %d; forcing reveal", state.session_id, turn_index)
        return _offer(state, top, terminal=True)

    question_id = derive_question_id(state.session_id, turn_index, question)
    entry = HistoryEntry(turn_index=turn_index, question=question, question_id=question_id)
    state = replace(
        state,
        phase=SessionPhase.AWAITING_ANSWER,
        history=state.history + (entry,),
        question_count=turn_index,
        pending_question=question,
        last_reveal_missed=False,
    )
    return state, AskQuestion(question=question, question_id=question_id, turn_index=turn_index)


def submit_answer(
    state: SessionState,
    answer: Union[Answer, str],
    config: EngineConfig,
    resources: EngineResources,
) -> SessionState:
    if state.phase != SessionPhase.AWAITING_ANSWER or state.pending_question is None:
        raise InvalidTransition(f"cannot answer in phase {state.phase.value}")
    parsed = parse_answer(answer)
    weights = process_answer(state.weights, state.pending_question, parsed, config, resources)
    answered = state.history[-1].model_copy(update={"answer": parsed})
    return replace(
        state,
        phase=SessionPhase.AWAITING_QUESTION,
        weights=weights,
        history=state.history[:-1] + (answered,),
        pending_question=None,
    )


def submit_reveal(state: SessionState, accepted: bool, config: EngineConfig) -> SessionState:
    """
    Resolve the pending reveal. A rejected candidate is penalized and never
    offered again; a rejected terminal reveal, or reaching the miss cap, ends
    the session in failure.
    """
    if state.phase != SessionPhase.AWAITING_REVEAL or state.pending_reveal is None:
        raise InvalidTransition(f"cannot resolve a reveal in phase {state.phase.value}")
    record = replace(state.pending_reveal, accepted=bool(accepted))
    state = replace(state, reveals=state.reveals + (record,), pending_reveal=None)

    if accepted:
        return _terminate(state, SessionOutcome.SUCCESS, TerminationReason.REVEAL_ACCEPTED)

    state = replace(
        state,
        weights=apply_reveal_penalty(state.weights, record.candidate_id, config.algo.reveal_penalty),
        rejected_ids=state.rejected_ids | {record.candidate_id},
        reveal_misses=state.reveal_misses + 1,
        phase=SessionPhase.AWAITING_QUESTION,
        last_reveal_missed=True,
    )
    logger.debug("session %s: reveal of %s rejected (%d misses)", state.session_id, record.candidate_id, state.reveal_misses)

    if record.terminal:
        reason = (
            TerminationReason.BUDGET_EXHAUSTED
            if state.question_count >= config.flow.max_questions
            else TerminationReason.QUESTIONS_EXHAUSTED
        )
        return _terminate(state, SessionOutcome.FAILURE, reason)
    if state.reveal_misses >= config.flow.max_reveal_misses:
        return _terminate(state, SessionOutcome.FAILURE, TerminationReason.REVEAL_MISS_CAP)
    return state


def audit_session(state: SessionState, resources: EngineResources) -> list[InvariantOutcome]:
    outcomes = run_checkers(default_check_context(state, resources))
    for outcome in outcomes:
        if not outcome.passed:
            logger.warning("session %s: invariant %s failed: %s", state.session_id, outcome.invariant_id.value, outcome.reason)
    return outcomes


# ------------------------------------------------------------------------------
# Convenience wrapper
# ------------------------------------------------------------------------------


class InferenceSession:
    """Owns one session's state and threads it through the transition functions."""

    def __init__(
        self,
        resources: EngineResources,
        config: Optional[EngineConfig] = None,
        *,
        include: Optional[InclusionRule] = None,
        session_id: Optional[str] = None,
    ) -> None:
        self.resources = resources
        self.config = config or EngineConfig()
        self.state = start_session(
            resources.catalog.list_candidates(),
            self.config,
            include=include,
            session_id=session_id,
        )

    @property
    def is_terminated(self) -> bool:
        return self.state.is_terminated

    @property
    def outcome(self) -> Optional[SessionOutcome]:
        return self.state.outcome

    def probabilities(self) -> tuple[ProbabilityEntry, ...]:
        return current_probabilities(self.state)

    def top_candidates(self, n: int = 5) -> Sequence[ProbabilityEntry]:
        return rank(self.probabilities())[:n]

    def aggregates(self) -> SessionAggregates:
        return current_aggregates(self.state, self.config)

    def next_action(self) -> EngineAction:
        self.state, action = next_action(self.state, self.config, self.resources)
        return action

    def answer(self, answer: Union[Answer, str]) -> None:
        self.state = submit_answer(self.state, answer, self.config, self.resources)

    def reveal(self, accepted: bool) -> None:
        self.state = submit_reveal(self.state, accepted, self.config)

    def audit(self) -> list[InvariantOutcome]:
        return audit_session(self.state, self.resources)
