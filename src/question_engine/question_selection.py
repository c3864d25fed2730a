# question_engine/question_selection.py
from __future__ import annotations

import logging
import math
import random
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Optional, Union

from question_engine.adapters.resources import EngineResources
from question_engine.belief_update import collect_holders
from question_engine.config import EngineConfig
from question_engine.contracts import (
    NEGATIVE_ANSWERS,
    Attribute,
    AttributeTier,
    AttributeType,
    Bundle,
    DataUnavailable,
    ExploreQuestion,
    ExploreSource,
    HardConfirmFact,
    HardConfirmQuestion,
    HistoryEntry,
    ProbabilityEntry,
    QuestionKind,
    SessionAggregates,
    SoftConfirmQuestion,
    WeightEntry,
)
from question_engine.coverage import passes_coverage_gate
from question_engine.facts import fact_question_text, fact_value
from question_engine.scoring import rank, session_aggregates

logger = logging.getLogger(__name__)

AnyQuestion = Union[ExploreQuestion, SoftConfirmQuestion, HardConfirmQuestion]

HARD_CONFIRM_FACT_ORDER: tuple[HardConfirmFact, ...] = (
    HardConfirmFact.IDENTIFIER_PREFIX,
    HardConfirmFact.OWNER,
)

# Scores are compared after rounding so float noise cannot break key-order ties.
_SCORE_DECIMALS = 12


# ------------------------------------------------------------------------------
# Selection context
# ------------------------------------------------------------------------------


@dataclass
class SelectionContext:
    """
    Inputs shared by every strategy for one turn. Provider reads are made
    lazily and memoized here, so a turn touches each provider at most once.
    """

    weights: tuple[WeightEntry, ...]
    probabilities: tuple[ProbabilityEntry, ...]
    turn_index: int
    history: tuple[HistoryEntry, ...]
    config: EngineConfig
    resources: EngineResources
    rng: random.Random
    used_keys: frozenset[str]
    used_hard_facts: frozenset[tuple[HardConfirmFact, str]]
    rejected_ids: frozenset[str] = frozenset()
    after_reveal_miss: bool = False
    _holders: Optional[dict[str, set[str]]] = field(default=None, repr=False)
    _attributes: Optional[dict[str, Attribute]] = field(default=None, repr=False)

    @property
    def candidate_ids(self) -> list[str]:
        return [w.candidate_id for w in self.weights]

    @property
    def prob_map(self) -> dict[str, float]:
        return {p.candidate_id: p.probability for p in self.probabilities}

    @property
    def ranked(self) -> list[ProbabilityEntry]:
        return rank(self.probabilities)

    @property
    def last_was_hard_confirm(self) -> bool:
        return bool(self.history) and isinstance(self.history[-1].question, HardConfirmQuestion)

    @property
    def negative_streak(self) -> int:
        return negative_streak(self.history)

    @property
    def streak_breaker_active(self) -> bool:
        return self.negative_streak >= self.config.flow.negative_streak_length

    def holders_by_key(self) -> dict[str, set[str]]:
        if self._holders is None:
            holders = collect_holders(
                self.resources.matrix,
                self.candidate_ids,
                None,
                self.config.algo.inferred_confidence_threshold,
            )
            if not holders:
                raise DataUnavailable("no attribute links for the remaining candidates")
            self._holders = holders
        return self._holders

    def attributes(self) -> dict[str, Attribute]:
        if self._attributes is None:
            attributes = {a.key: a for a in self.resources.taxonomy.list_attributes()}
            if not attributes:
                raise DataUnavailable("taxonomy returned no attributes")
            self._attributes = attributes
        return self._attributes

    def aggregates(self) -> SessionAggregates:
        params = self.config.flow.effective_confirm_threshold
        return session_aggregates(
            self.probabilities,
            minimum=params.min,
            maximum=params.max,
            divisor=params.divisor,
            negative_streak=self.negative_streak,
        )


def turn_rng(seed: int, turn_index: int) -> random.Random:
    """Per-turn generator; the same seed and turn always draw the same values."""
    return random.Random(seed * 1_000_003 + turn_index)


def negative_streak(history: Sequence[HistoryEntry]) -> int:
    count = 0
    for entry in reversed(history):
        if entry.answer not in NEGATIVE_ANSWERS:
            break
        count += 1
    return count


def build_used_attribute_keys(history: Iterable[HistoryEntry], resources: EngineResources) -> frozenset[str]:
    """
    Keys Explore and SoftConfirm may no longer ask.

    A plain or soft question retires its whole synonym group. A bundle retires
    its own key, and its members only when it was answered negatively.
    """
    taxonomy = resources.taxonomy
    used: set[str] = set()
    for entry in history:
        question = entry.question
        if isinstance(question, HardConfirmQuestion):
            continue
        if isinstance(question, ExploreQuestion) and question.is_bundle:
            used.add(question.target_key)
            if entry.answer in NEGATIVE_ANSWERS:
                for key in question.resolved_keys:
                    used |= taxonomy.synonym_group(key)
            continue
        key = question.target_key if isinstance(question, ExploreQuestion) else question.attribute_key
        for k in (key, *question.resolved_keys):
            used |= taxonomy.synonym_group(k)
    return frozenset(used)


def build_used_hard_facts(history: Iterable[HistoryEntry]) -> frozenset[tuple[HardConfirmFact, str]]:
    return frozenset(
        (entry.question.fact, entry.question.value)
        for entry in history
        if isinstance(entry.question, HardConfirmQuestion)
    )


def build_selection_context(
    weights: Sequence[WeightEntry],
    probabilities: Sequence[ProbabilityEntry],
    turn_index: int,
    history: Sequence[HistoryEntry],
    config: EngineConfig,
    resources: EngineResources,
    *,
    after_reveal_miss: bool = False,
    rejected_ids: Iterable[str] = (),
) -> SelectionContext:
    history = tuple(history)
    return SelectionContext(
        weights=tuple(weights),
        probabilities=tuple(probabilities),
        turn_index=turn_index,
        history=history,
        config=config,
        resources=resources,
        rng=turn_rng(config.seed, turn_index),
        used_keys=build_used_attribute_keys(history, resources),
        used_hard_facts=build_used_hard_facts(history),
        rejected_ids=frozenset(rejected_ids),
        after_reveal_miss=after_reveal_miss,
    )


# ------------------------------------------------------------------------------
# Scoring explore options
# ------------------------------------------------------------------------------


@dataclass(frozen=True)
class ExploreOption:
    key: str
    display_text: str
    resolved_keys: tuple[str, ...]
    holders: frozenset[str]
    holder_mass: float
    source: ExploreSource
    bundle_id: Optional[str] = None

    @property
    def is_bundle(self) -> bool:
        return self.bundle_id is not None

    def to_question(self) -> ExploreQuestion:
        return ExploreQuestion(
            target_key=self.key,
            display_text=self.display_text,
            resolved_keys=self.resolved_keys,
            bundle_id=self.bundle_id,
            source=self.source,
        )


def shannon_entropy(values: Iterable[float]) -> float:
    """Entropy in bits of a non-negative mass vector (normalized internally)."""
    masses = [v for v in values if v > 0.0]
    total = math.fsum(masses)
    if total <= 0.0:
        return 0.0
    return -math.fsum((m / total) * math.log2(m / total) for m in masses)


def expected_posterior_entropy(
    prob_map: Mapping[str, float],
    holders: Iterable[str],
    answer_likelihood: float,
) -> float:
    """
    Expected entropy of the distribution after a noisy yes/no answer, where a
    holder answers yes with `answer_likelihood` and a non-holder with its
    complement.
    """
    holder_set = frozenset(holders)
    yes_mass: list[float] = []
    no_mass: list[float] = []
    for cid, p in prob_map.items():
        l_yes = answer_likelihood if cid in holder_set else 1.0 - answer_likelihood
        yes_mass.append(p * l_yes)
        no_mass.append(p * (1.0 - l_yes))
    p_yes = math.fsum(yes_mass)
    p_no = math.fsum(no_mass)
    expected = 0.0
    if p_yes > 0.0:
        expected += p_yes * shannon_entropy(yes_mass)
    if p_no > 0.0:
        expected += p_no * shannon_entropy(no_mass)
    return expected


def select_by_information_gain(
    options: Sequence[ExploreOption],
    prob_map: Mapping[str, float],
    answer_likelihood: float,
) -> Optional[ExploreOption]:
    if not options:
        return None
    return min(
        options,
        key=lambda o: (
            round(expected_posterior_entropy(prob_map, o.holders, answer_likelihood), _SCORE_DECIMALS),
            o.key,
        ),
    )


def select_closest_to_half(options: Sequence[ExploreOption]) -> Optional[ExploreOption]:
    if not options:
        return None
    return min(options, key=lambda o: (round(abs(o.holder_mass - 0.5), _SCORE_DECIMALS), o.key))


def select_highest_mass(options: Sequence[ExploreOption]) -> Optional[ExploreOption]:
    if not options:
        return None
    return min(options, key=lambda o: (-round(o.holder_mass, _SCORE_DECIMALS), o.key))


def within_band(mass: float, band: Optional[tuple[float, float]]) -> bool:
    if band is None:
        return True
    low, high = band
    return low <= mass <= high


def pick_explore_option(ctx: SelectionContext, options: Sequence[ExploreOption]) -> Optional[ExploreOption]:
    """
    Apply the p-value band (retrying without it when nothing qualifies), then
    the streak breaker or the configured discrimination policy.
    """
    if not options:
        return None
    algo = ctx.config.algo
    in_band = [o for o in options if within_band(o.holder_mass, algo.explore_p_value_band)]
    if not in_band:
        logger.debug("turn %d: no explore option inside p-value band; retrying without band", ctx.turn_index)
        in_band = list(options)

    if ctx.streak_breaker_active:
        return select_highest_mass(in_band)
    if algo.use_information_gain:
        return select_by_information_gain(in_band, ctx.prob_map, algo.ig_answer_likelihood)
    return select_closest_to_half(in_band)


# ------------------------------------------------------------------------------
# Building the explore pool
# ------------------------------------------------------------------------------


def _tier_source(tier: AttributeTier) -> ExploreSource:
    if tier == AttributeTier.SENSITIVE:
        return ExploreSource.SENSITIVE
    if tier == AttributeTier.ABSTRACT:
        return ExploreSource.ABSTRACT
    return ExploreSource.NORMAL


def tier_unlocked(tier: AttributeTier, turn_index: int, config: EngineConfig) -> bool:
    windows = config.flow.eligibility
    if tier == AttributeTier.BANNED:
        return False
    if tier == AttributeTier.SENSITIVE:
        return turn_index >= windows.sensitive_from
    if tier == AttributeTier.ABSTRACT:
        return turn_index >= windows.abstract_from
    return True


def _attribute_text(attribute: Attribute) -> str:
    return attribute.question_text or f"Does it feature “{attribute.label}”?"


def _bundle_text(bundle: Bundle) -> str:
    return bundle.question_text or f"Does it involve anything like “{bundle.label}”?"


def _soft_text(attribute: Attribute) -> str:
    return attribute.question_text or f"Would you say it has “{attribute.label}”?"


def _group_holders(keys: Iterable[str], holders_by_key: Mapping[str, set[str]]) -> frozenset[str]:
    held: set[str] = set()
    for key in keys:
        held |= holders_by_key.get(key, set())
    return frozenset(held)


def _passes_gate(holder_count: int, ctx: SelectionContext) -> bool:
    cov = ctx.config.coverage
    return passes_coverage_gate(
        holder_count,
        len(ctx.weights),
        cov.mode,
        cov.min_ratio,
        cov.min_absolute,
        cov.max_ratio,
    )


def attribute_options(
    ctx: SelectionContext,
    *,
    gated: bool = True,
    respect_windows: bool = True,
) -> list[ExploreOption]:
    """One option per unused synonym group, represented by its smallest known key."""
    attributes = ctx.attributes()
    holders_by_key = ctx.holders_by_key()
    prob_map = ctx.prob_map
    taxonomy = ctx.resources.taxonomy
    seen_groups: set[frozenset[str]] = set()
    options: list[ExploreOption] = []

    for key in sorted(attributes):
        attribute = attributes[key]
        if attribute.tier == AttributeTier.BANNED:
            continue
        if respect_windows and not tier_unlocked(attribute.tier, ctx.turn_index, ctx.config):
            continue
        group = taxonomy.synonym_group(key)
        if group in seen_groups or group & ctx.used_keys:
            continue
        seen_groups.add(group)
        resolved = tuple(
            sorted(k for k in group if k not in attributes or attributes[k].tier != AttributeTier.BANNED)
        )
        holders = _group_holders(resolved, holders_by_key)
        if not holders or len(holders) >= len(ctx.weights):
            continue
        if gated and not _passes_gate(len(holders), ctx):
            continue
        options.append(
            ExploreOption(
                key=key,
                display_text=_attribute_text(attribute),
                resolved_keys=resolved,
                holders=holders,
                holder_mass=math.fsum(prob_map.get(cid, 0.0) for cid in holders),
                source=_tier_source(attribute.tier),
            )
        )
    return options


def bundle_options(ctx: SelectionContext, *, gated: bool = True) -> list[ExploreOption]:
    windows = ctx.config.flow.eligibility
    attributes = ctx.attributes()
    holders_by_key = ctx.holders_by_key()
    prob_map = ctx.prob_map
    taxonomy = ctx.resources.taxonomy
    options: list[ExploreOption] = []

    for bundle in sorted(ctx.resources.taxonomy.list_bundles(), key=lambda b: b.bundle_id):
        if bundle.question_key in ctx.used_keys:
            continue
        if bundle.sensitive and ctx.turn_index < windows.sensitive_from:
            continue
        members: set[str] = set()
        for member in bundle.members:
            attribute = attributes.get(member)
            if attribute is not None and attribute.tier == AttributeTier.BANNED:
                continue
            members |= taxonomy.synonym_group(member)
        if not members or members <= ctx.used_keys:
            continue
        resolved = tuple(sorted(members))
        holders = _group_holders(resolved, holders_by_key)
        if not holders or len(holders) >= len(ctx.weights):
            continue
        if gated and not _passes_gate(len(holders), ctx):
            continue
        options.append(
            ExploreOption(
                key=bundle.question_key,
                display_text=_bundle_text(bundle),
                resolved_keys=resolved,
                holders=holders,
                holder_mass=math.fsum(prob_map.get(cid, 0.0) for cid in holders),
                source=ExploreSource.BUNDLE,
                bundle_id=bundle.bundle_id,
            )
        )
    return options


# ------------------------------------------------------------------------------
# Confirm selection
# ------------------------------------------------------------------------------


def select_soft_confirm(ctx: SelectionContext) -> Optional[SoftConfirmQuestion]:
    """
    Among unused inferred attributes with at least one holder: prefer those
    the top-ranked candidate holds with holder mass inside the p-value band,
    then any inside the band; closest to 0.5 wins within each tier.
    """
    attributes = ctx.attributes()
    holders_by_key = ctx.holders_by_key()
    prob_map = ctx.prob_map
    taxonomy = ctx.resources.taxonomy
    band = ctx.config.algo.explore_p_value_band
    ranked = ctx.ranked
    top_id = ranked[0].candidate_id if ranked else None

    preferred: list[tuple[float, str, SoftConfirmQuestion]] = []
    fallback: list[tuple[float, str, SoftConfirmQuestion]] = []
    seen_groups: set[frozenset[str]] = set()
    for key in sorted(attributes):
        attribute = attributes[key]
        if attribute.attribute_type != AttributeType.INFERRED:
            continue
        if not tier_unlocked(attribute.tier, ctx.turn_index, ctx.config):
            continue
        group = taxonomy.synonym_group(key)
        if group in seen_groups or group & ctx.used_keys:
            continue
        seen_groups.add(group)
        resolved = tuple(sorted(group))
        holders = _group_holders(resolved, holders_by_key)
        if not holders:
            continue
        mass = math.fsum(prob_map.get(cid, 0.0) for cid in holders)
        if not within_band(mass, band):
            continue
        question = SoftConfirmQuestion(attribute_key=key, display_text=_soft_text(attribute), resolved_keys=resolved)
        scored = (round(abs(mass - 0.5), _SCORE_DECIMALS), key, question)
        if top_id is not None and top_id in holders:
            preferred.append(scored)
        else:
            fallback.append(scored)

    for pool in (preferred, fallback):
        if pool:
            return min(pool, key=lambda item: (item[0], item[1]))[2]
    return None


def select_hard_confirm(ctx: SelectionContext) -> Optional[HardConfirmQuestion]:
    """
    First unused (fact, value) over the top-K candidates, in candidate-rank
    order then fact-type order. Never follows another hard confirm.
    """
    if ctx.last_was_hard_confirm:
        return None
    top = [p for p in ctx.ranked if p.candidate_id not in ctx.rejected_ids][: ctx.config.flow.hard_confirm_top_k]
    if not top:
        return None
    catalog = ctx.resources.catalog.get_candidates([p.candidate_id for p in top])
    if not catalog:
        raise DataUnavailable("catalog returned none of the top-ranked candidates")

    for position, entry in enumerate(top, start=1):
        candidate = catalog.get(entry.candidate_id)
        if candidate is None:
            continue
        for fact in HARD_CONFIRM_FACT_ORDER:
            value = fact_value(candidate, fact)
            if value is None or (fact, value) in ctx.used_hard_facts:
                continue
            return HardConfirmQuestion(
                fact=fact,
                value=value,
                candidate_id=candidate.candidate_id,
                rank=position,
                display_text=fact_question_text(fact, value),
            )
    return None


def should_insert_confirm(turn_index: int, aggregates: SessionAggregates, config: EngineConfig) -> bool:
    low, high = config.confirm.confidence_confirm_band
    if turn_index in config.confirm.forced_confirm_turns:
        return True
    if low <= aggregates.confidence <= high:
        return True
    return aggregates.effective_candidates <= aggregates.effective_confirm_threshold


def choose_confirm_kind(
    confidence: float,
    soft_available: bool,
    config: EngineConfig,
    rng: random.Random,
) -> QuestionKind:
    if confidence >= config.confirm.hard_confidence_min:
        return QuestionKind.HARD_CONFIRM
    if confidence >= config.confirm.soft_confidence_min and soft_available:
        return QuestionKind.SOFT_CONFIRM
    if soft_available:
        return QuestionKind.SOFT_CONFIRM if rng.random() < 0.5 else QuestionKind.HARD_CONFIRM
    return QuestionKind.HARD_CONFIRM


# ------------------------------------------------------------------------------
# Strategies and the explore fallback chain
# ------------------------------------------------------------------------------

Strategy = Callable[[SelectionContext], Optional[AnyQuestion]]


def unified_explore(ctx: SelectionContext) -> Optional[ExploreQuestion]:
    """Bundles plus plain attributes, each behind its turn window."""
    options = bundle_options(ctx)
    if ctx.turn_index >= ctx.config.flow.eligibility.plain_attributes_from:
        options += attribute_options(ctx)
    bundles = [o for o in options if o.is_bundle]
    prefer = ctx.config.flow.bundle_prefer_ratio
    if bundles and prefer > 0.0 and ctx.rng.random() < prefer:
        options = bundles
    picked = pick_explore_option(ctx, options)
    return picked.to_question() if picked else None


def plain_explore(ctx: SelectionContext) -> Optional[ExploreQuestion]:
    picked = pick_explore_option(ctx, attribute_options(ctx))
    return picked.to_question() if picked else None


def forced_hard_confirm(ctx: SelectionContext) -> Optional[HardConfirmQuestion]:
    if not ctx.config.algo.p_value_fallback_enabled:
        return None
    return select_hard_confirm(ctx)


def last_resort_explore(ctx: SelectionContext) -> Optional[ExploreQuestion]:
    """Any unused, non-banned attribute a remaining candidate holds."""
    picked = select_closest_to_half(attribute_options(ctx, gated=False, respect_windows=False))
    return picked.to_question() if picked else None


EXPLORE_FALLBACK_CHAIN: tuple[Strategy, ...] = (
    unified_explore,
    plain_explore,
    forced_hard_confirm,
    last_resort_explore,
)


def attempt(strategy: Strategy, ctx: SelectionContext) -> Optional[AnyQuestion]:
    try:
        return strategy(ctx)
    except DataUnavailable as exc:
        logger.warning("turn %d: %s skipped: %s", ctx.turn_index, strategy.__name__, exc)
        return None


def run_chain(chain: Sequence[Strategy], ctx: SelectionContext) -> Optional[AnyQuestion]:
    for strategy in chain:
        question = attempt(strategy, ctx)
        if question is not None:
            logger.debug("turn %d: %s selected %s", ctx.turn_index, strategy.__name__, question.kind.value)
            return question
    return None


# ------------------------------------------------------------------------------
# Public entry point
# ------------------------------------------------------------------------------


def select_next_question(
    weights: Sequence[WeightEntry],
    probabilities: Sequence[ProbabilityEntry],
    turn_index: int,
    history: Sequence[HistoryEntry],
    config: EngineConfig,
    resources: EngineResources,
    *,
    after_reveal_miss: bool = False,
    rejected_ids: Iterable[str] = (),
    chain: Sequence[Strategy] = EXPLORE_FALLBACK_CHAIN,
) -> Optional[AnyQuestion]:
    """
    Choose the question for `turn_index` (1-based), or None when nothing
    askable remains.
    """
    ctx = build_selection_context(
        weights,
        probabilities,
        turn_index,
        history,
        config,
        resources,
        after_reveal_miss=after_reveal_miss,
        rejected_ids=rejected_ids,
    )

    if after_reveal_miss:
        question = attempt(select_hard_confirm, ctx)
        if question is not None:
            logger.debug("turn %d: hard confirm after reveal miss", turn_index)
            return question

    aggregates = ctx.aggregates()
    if should_insert_confirm(turn_index, aggregates, config):
        soft = attempt(select_soft_confirm, ctx)
        kind = choose_confirm_kind(aggregates.confidence, soft is not None, config, ctx.rng)
        if kind == QuestionKind.SOFT_CONFIRM and soft is not None:
            logger.debug("turn %d: soft confirm %s", turn_index, soft.attribute_key)
            return soft
        hard = attempt(select_hard_confirm, ctx)
        if hard is not None:
            logger.debug("turn %d: hard confirm %s=%s", turn_index, hard.fact.value, hard.value)
            return hard

    return run_chain(chain, ctx)
