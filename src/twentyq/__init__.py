"""
twentyq distribution import namespace.

Re-exports the public surface of the core `question_engine` package so
callers can `from twentyq import InferenceSession, EngineConfig`.
"""

from importlib.metadata import PackageNotFoundError, version

# src/twentyq/__init__.py
from question_engine.adapters.resources import EngineResources
from question_engine.adapters.snapshot import CatalogSnapshot, load_catalog_snapshot
from question_engine.belief_update import parse_answer, process_answer
from question_engine.config import ConfigError, EngineConfig, load_engine_config
from question_engine.contracts import (
    Answer,
    Attribute,
    AttributeLink,
    Bundle,
    Candidate,
    DataUnavailable,
    EmptyDistribution,
    EngineError,
    InvalidTransition,
)
from question_engine.engine import (
    AskQuestion,
    InferenceSession,
    OfferReveal,
    SessionEnded,
    next_action,
    start_session,
    submit_answer,
    submit_reveal,
)
from question_engine.question_selection import select_next_question

try:
    __version__ = version("twentyq")
except PackageNotFoundError:  # pragma: no cover - fallback for local non-installed environments
    __version__ = "0+unknown"

__all__ = [
    "Answer",
    "AskQuestion",
    "Attribute",
    "AttributeLink",
    "Bundle",
    "Candidate",
    "CatalogSnapshot",
    "ConfigError",
    "DataUnavailable",
    "EmptyDistribution",
    "EngineConfig",
    "EngineError",
    "EngineResources",
    "InferenceSession",
    "InvalidTransition",
    "OfferReveal",
    "SessionEnded",
    "__version__",
    "load_catalog_snapshot",
    "load_engine_config",
    "next_action",
    "parse_answer",
    "process_answer",
    "select_next_question",
    "start_session",
    "submit_answer",
    "submit_reveal",
]
