# question_engine/facts.py
from __future__ import annotations

import re
import unicodedata
from typing import Optional

from question_engine.contracts import Candidate, HardConfirmFact

IDENTIFIER_PREFIX_LENGTH = 3
UNKNOWN_PREFIX = "?"

_MAX_BRACKET_STRIPS = 3
_MAX_SYMBOL_STRIPS = 10

_BRACKET_PREFIX = re.compile(
    r"^(?:【[^】]*】|\([^)]*\)|\[[^\]]*\]|\{[^}]*\}|＜[^＞]*＞|<[^>]*>|「[^」]*」|『[^』]*』|（[^）]*）|［[^］]*］|｛[^｝]*｝)"
)
_SYMBOL_PREFIX = re.compile(
    r"^[!\"#$%&'()*+,\-./:;<=>?@\[\\\]^_`{|}~"
    r"！＂＃＄％＆＇（）＊＋，－．／：；＜＝＞？＠［＼］＾＿｀｛｜｝～"
    r"★☆◆◇■□・…〜ー—–]"
)
_LEADING_SPACE = re.compile(r"^[\s　]+")


def _strip_repeated(text: str, pattern: re.Pattern[str], limit: int) -> str:
    for _ in range(limit):
        stripped = pattern.sub("", text, count=1)
        if stripped == text:
            break
        text = _LEADING_SPACE.sub("", stripped)
    return text


def identifier_prefix(identifier: Optional[str]) -> str:
    """
    Normalized opening characters of a display identifier, used as a
    hard-confirm fact ("does the title start with ...?").

    NFKC-normalizes, drops up to three leading bracketed tags such as
    "【new】" or "[demo]", then up to ten leading decorative symbols, and
    returns the first three remaining characters ("?" when nothing is left).
    """
    if not isinstance(identifier, str):
        return UNKNOWN_PREFIX
    text = _LEADING_SPACE.sub("", unicodedata.normalize("NFKC", identifier))
    text = _strip_repeated(text, _BRACKET_PREFIX, _MAX_BRACKET_STRIPS)
    text = _strip_repeated(text, _SYMBOL_PREFIX, _MAX_SYMBOL_STRIPS)
    text = text.strip()
    if not text:
        return UNKNOWN_PREFIX
    return text[:IDENTIFIER_PREFIX_LENGTH]


def fact_value(candidate: Candidate, fact: HardConfirmFact) -> Optional[str]:
    """The value `candidate` contributes for `fact`, or None when it has none."""
    if fact == HardConfirmFact.IDENTIFIER_PREFIX:
        prefix = identifier_prefix(candidate.identifier)
        return None if prefix == UNKNOWN_PREFIX else prefix
    if fact == HardConfirmFact.OWNER:
        owner = (candidate.owner or "").strip()
        return owner or None
    raise ValueError(f"unsupported hard-confirm fact {fact!r}")


def fact_question_text(fact: HardConfirmFact, value: str) -> str:
    if fact == HardConfirmFact.IDENTIFIER_PREFIX:
        return f"Does its title start with “{value}”?"
    return f"Is it by {value}?"
