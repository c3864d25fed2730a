# question_engine/contracts.py
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from question_engine._compat import StrEnum


class EngineError(Exception):
    """Base class for conditions raised inside the question engine."""


class EmptyDistribution(EngineError):
    """Raised when a weight set is empty or carries no mass."""


class DataUnavailable(EngineError):
    """Raised when a taxonomy or matrix lookup yields nothing for a turn."""


class InvalidTransition(EngineError):
    """Raised when a caller drives the session out of protocol order."""


# ------------------------------------------------------------------------------
# Shared BaseModel config helpers
# ------------------------------------------------------------------------------

_IMMUTABLE_CONTRACT_CONFIG = ConfigDict(
    extra="forbid",
    use_enum_values=False,
    frozen=True,
)

BUNDLE_KEY_PREFIX = "bundle:"


# ------------------------------------------------------------------------------
# Enumerations
# ------------------------------------------------------------------------------


class AttributeType(StrEnum):
    ASSERTED = "asserted"
    INFERRED = "inferred"
    STRUCTURAL = "structural"


class AttributeTier(StrEnum):
    """Curation tier; decides from which turn an attribute may be asked."""

    NORMAL = "normal"
    SENSITIVE = "sensitive"
    ABSTRACT = "abstract"
    BANNED = "banned"


class QuestionKind(StrEnum):
    EXPLORE = "explore"
    SOFT_CONFIRM = "soft_confirm"
    HARD_CONFIRM = "hard_confirm"


class ExploreSource(StrEnum):
    BUNDLE = "bundle"
    NORMAL = "normal"
    SENSITIVE = "sensitive"
    ABSTRACT = "abstract"


class HardConfirmFact(StrEnum):
    IDENTIFIER_PREFIX = "identifier_prefix"
    OWNER = "owner"


class Answer(StrEnum):
    YES = "yes"
    PROBABLY_YES = "probably_yes"
    UNKNOWN = "unknown"
    DONT_CARE = "dont_care"
    PROBABLY_NO = "probably_no"
    NO = "no"


NEGATIVE_ANSWERS = frozenset({Answer.NO, Answer.PROBABLY_NO})
AFFIRMATIVE_ANSWERS = frozenset({Answer.YES, Answer.PROBABLY_YES})


class CoverageMode(StrEnum):
    RATIO = "ratio"
    ABSOLUTE = "absolute"
    AUTO = "auto"


class UpdatePolicy(StrEnum):
    BAYESIAN = "bayesian"
    MULTIPLICATIVE = "multiplicative"


class SessionPhase(StrEnum):
    AWAITING_QUESTION = "awaiting_question"
    AWAITING_ANSWER = "awaiting_answer"
    AWAITING_REVEAL = "awaiting_reveal"
    TERMINATED = "terminated"


class SessionOutcome(StrEnum):
    SUCCESS = "success"
    FAILURE = "failure"


class TerminationReason(StrEnum):
    REVEAL_ACCEPTED = "reveal_accepted"
    REVEAL_MISS_CAP = "reveal_miss_cap"
    BUDGET_EXHAUSTED = "budget_exhausted"
    QUESTIONS_EXHAUSTED = "questions_exhausted"
    EMPTY_DISTRIBUTION = "empty_distribution"
    NO_CANDIDATE = "no_candidate"


# ------------------------------------------------------------------------------
# Catalog / taxonomy records
# ------------------------------------------------------------------------------


class Candidate(BaseModel):
    model_config = _IMMUTABLE_CONTRACT_CONFIG
    candidate_id: str
    identifier: str = ""
    owner: Optional[str] = None
    popularity: float = 0.0
    popularity_bonus: float = 0.0
    origin: Optional[str] = None


class Attribute(BaseModel):
    model_config = _IMMUTABLE_CONTRACT_CONFIG
    key: str
    label: str
    attribute_type: AttributeType = AttributeType.ASSERTED
    question_text: Optional[str] = None
    tier: AttributeTier = AttributeTier.NORMAL


class Bundle(BaseModel):
    """Thematic attribute set asked with has-any semantics."""

    model_config = _IMMUTABLE_CONTRACT_CONFIG
    bundle_id: str
    label: str
    question_text: Optional[str] = None
    members: tuple[str, ...] = ()
    sensitive: bool = False

    @property
    def question_key(self) -> str:
        return f"{BUNDLE_KEY_PREFIX}{self.bundle_id}"


class AttributeLink(BaseModel):
    """
    A candidate holding an attribute. `confidence` is None for asserted and
    structural links; inferred links carry a score in [0, 1].
    """

    model_config = _IMMUTABLE_CONTRACT_CONFIG
    candidate_id: str
    attribute_key: str
    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)


# ------------------------------------------------------------------------------
# Belief mass
# ------------------------------------------------------------------------------


@dataclass(frozen=True)
class WeightEntry:
    candidate_id: str
    weight: float

    def __post_init__(self) -> None:
        if math.isnan(self.weight) or self.weight < 0:
            raise ValueError(f"weight for {self.candidate_id!r} must be >= 0, got {self.weight!r}")


@dataclass(frozen=True)
class ProbabilityEntry:
    candidate_id: str
    probability: float


@dataclass(frozen=True)
class SessionAggregates:
    confidence: float
    effective_candidates: float
    effective_confirm_threshold: int
    candidate_count: int
    negative_streak: int = 0
    reveal_misses: int = 0


# ------------------------------------------------------------------------------
# Questions (tagged union on `kind`)
# ------------------------------------------------------------------------------


class ExploreQuestion(BaseModel):
    model_config = _IMMUTABLE_CONTRACT_CONFIG
    kind: Literal[QuestionKind.EXPLORE] = QuestionKind.EXPLORE
    target_key: str
    display_text: str
    resolved_keys: tuple[str, ...] = ()
    bundle_id: Optional[str] = None
    source: ExploreSource = ExploreSource.NORMAL

    @property
    def is_bundle(self) -> bool:
        return self.bundle_id is not None


class SoftConfirmQuestion(BaseModel):
    model_config = _IMMUTABLE_CONTRACT_CONFIG
    kind: Literal[QuestionKind.SOFT_CONFIRM] = QuestionKind.SOFT_CONFIRM
    attribute_key: str
    display_text: str
    resolved_keys: tuple[str, ...] = ()


class HardConfirmQuestion(BaseModel):
    model_config = _IMMUTABLE_CONTRACT_CONFIG
    kind: Literal[QuestionKind.HARD_CONFIRM] = QuestionKind.HARD_CONFIRM
    fact: HardConfirmFact
    value: str
    candidate_id: str
    rank: int = Field(default=1, ge=1)
    display_text: str


Question = Annotated[
    Union[ExploreQuestion, SoftConfirmQuestion, HardConfirmQuestion],
    Field(discriminator="kind"),
]


class HistoryEntry(BaseModel):
    model_config = _IMMUTABLE_CONTRACT_CONFIG
    turn_index: int = Field(ge=1)
    question: Question
    question_id: str
    answer: Optional[Answer] = None


# ------------------------------------------------------------------------------
# Session state
# ------------------------------------------------------------------------------


@dataclass(frozen=True)
class RevealRecord:
    candidate_id: str
    probability: float
    after_question: int
    terminal: bool = False
    accepted: Optional[bool] = None


@dataclass(frozen=True)
class SessionState:
    """
    Everything one session owns. Transitions in `engine` return new instances;
    nothing here is shared between sessions.
    """

    session_id: str
    phase: SessionPhase
    weights: tuple[WeightEntry, ...]
    history: tuple[HistoryEntry, ...] = ()
    question_count: int = 0
    rejected_ids: frozenset[str] = frozenset()
    reveals: tuple[RevealRecord, ...] = ()
    reveal_misses: int = 0
    pending_question: Optional[Union[ExploreQuestion, SoftConfirmQuestion, HardConfirmQuestion]] = None
    pending_reveal: Optional[RevealRecord] = None
    last_reveal_missed: bool = False
    outcome: Optional[SessionOutcome] = None
    termination_reason: Optional[TerminationReason] = None

    @property
    def is_terminated(self) -> bool:
        return self.phase == SessionPhase.TERMINATED

    @property
    def weight_map(self) -> dict[str, float]:
        return {entry.candidate_id: entry.weight for entry in self.weights}
