# question_engine/stable_ids.py
from __future__ import annotations

import hashlib
import json
from collections.abc import Iterable
from typing import Any, Union

from question_engine.contracts import ExploreQuestion, HardConfirmQuestion, SoftConfirmQuestion


def _sha256_hex(s: str) -> str:
    return hashlib.sha256(s.encode("utf-8")).hexdigest()


def _canon(obj: Any) -> str:
    """
    Canonical JSON string (stable across runs) for hashing.
    """
    return json.dumps(obj, sort_keys=True, ensure_ascii=False, separators=(",", ":"))


def derive_session_id(candidate_ids: Iterable[str], *, seed: int = 0, nonce: str = "") -> str:
    """
    Session id from the starting candidate set. Pass a `nonce` (e.g. a user
    or request id) to keep otherwise identical sessions apart.
    """
    key_obj = {
        "candidates": sorted(candidate_ids),
        "seed": seed,
        "nonce": nonce,
    }
    return "ses_" + _sha256_hex(_canon(key_obj))[:32]


def derive_question_id(
    session_id: str,
    turn_index: int,
    question: Union[ExploreQuestion, SoftConfirmQuestion, HardConfirmQuestion],
) -> str:
    # Display text is excluded so rewording a prompt keeps ids stable.
    payload = question.model_dump(mode="json", exclude={"display_text"})
    key_obj = {
        "session_id": session_id,
        "turn_index": turn_index,
        "question": payload,
    }
    return "q_" + _sha256_hex(_canon(key_obj))
