"""Utility helpers to fold Portuguese text and split it into match tokens."""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass, field
from typing import FrozenSet, List, Optional


# Function words that never carry signal, regardless of length.
STOP_WORDS: FrozenSet[str] = frozenset({
    "a", "o", "as", "os", "de", "da", "do", "das", "dos", "e", "em",
    "para", "por", "com", "um", "uma", "na", "no", "nas", "nos", "que",
})

# Greetings and acknowledgements kept despite being shorter than the minimum.
SHORT_ALLOWED: FrozenSet[str] = frozenset({"oi", "ola", "opa", "eai", "eae", "hey", "ok"})

MIN_TOKEN_LENGTH = 3

_WS = re.compile(r"\s+")
_NON_ALNUM = re.compile(r"[^a-z0-9\s]")


@dataclass(frozen=True)
class Lexicon:
    """Word lists used by ``tokenize_for_match``."""

    stop_words: FrozenSet[str] = field(default=STOP_WORDS)
    short_allowed: FrozenSet[str] = field(default=SHORT_ALLOWED)
    min_token_length: int = MIN_TOKEN_LENGTH

    def keeps(self, token: str) -> bool:
        if token in self.stop_words:
            return False
        return len(token) >= self.min_token_length or token in self.short_allowed


DEFAULT_LEXICON = Lexicon()


def normalize_text(text: Optional[str]) -> str:
    """Lower-case, strip diacritics and collapse whitespace.

    ``"  Ação   RÁPIDA "`` becomes ``"acao rapida"``. The result is stable under
    a second pass, so callers may normalise already-normalised text.
    """

    if not text:
        return ""

    decomposed = unicodedata.normalize("NFD", text.lower())
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return _WS.sub(" ", stripped).strip()


def tokenize_for_match(text: Optional[str], lexicon: Optional[Lexicon] = None) -> List[str]:
    """Split ``text`` into the tokens used for FAQ matching.

    Anything outside ``[a-z0-9]`` after normalisation acts as a separator.
    Order and duplicates are preserved.
    """

    lex = lexicon or DEFAULT_LEXICON
    cleaned = _NON_ALNUM.sub(" ", normalize_text(text))
    return [part for part in cleaned.split() if lex.keeps(part)]


__all__ = [
    "DEFAULT_LEXICON",
    "Lexicon",
    "MIN_TOKEN_LENGTH",
    "SHORT_ALLOWED",
    "STOP_WORDS",
    "normalize_text",
    "tokenize_for_match",
]
