from __future__ import annotations

from typing import Iterable, Optional, Tuple

REFUSAL_CORRECTION = (
    "SYSTEM ERROR: You DO have access to tools. USE THEM. "
    "Reply with a JSON tool call instead of declining."
)

# Literal substrings, matched against lower-cased model text.
_REFUSAL_PHRASES: Tuple[str, ...] = (
    "i cannot browse",
    "i can't browse",
    "i don't have access",
    "i do not have access",
    "i can't access",
    "i cannot access",
    "unable to browse",
    "real-time news",
    "no internet access",
    "as an ai",
    "i do not have the ability",
    "i don't have the ability",
    "cannot access the internet",
    "can't access the internet",
    "i'm unable to access",
    "i am unable to access",
)


class RefusalDetector:
    def __init__(self, phrases: Optional[Iterable[str]] = None) -> None:
        source = _REFUSAL_PHRASES if phrases is None else phrases
        self._phrases = tuple(p.strip().lower() for p in source if p and p.strip())

    @property
    def phrases(self) -> Tuple[str, ...]:
        return self._phrases

    def matched_phrase(self, text: str) -> Optional[str]:
        low = (text or "").lower()
        for phrase in self._phrases:
            if phrase in low:
                return phrase
        return None

    def is_refusal(self, text: str) -> bool:
        return self.matched_phrase(text) is not None


def looks_like_refusal(text: str) -> bool:
    return RefusalDetector().is_refusal(text)
