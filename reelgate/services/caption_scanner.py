"""
Caption Text Scanner - profanity detection on captions.
Normalizes obfuscated text (leetspeak, masking symbols) before matching
tokens against the profanity lexicon.
"""

import re
from dataclasses import dataclass
from typing import List, Set


@dataclass
class CaptionScan:
    """Result of scanning one caption."""
    normalized: str
    tokens: List[str]
    profanity_hits: List[str]

    @property
    def is_profane(self) -> bool:
        return len(self.profanity_hits) > 0


class CaptionScanner:
    """
    Lexicon-based caption filter.
    Tokens match exactly, through a simple inflection, or when a root opens
    or closes the (uninflected) token, so compounds like "shitshow" match
    while place names like "Scunthorpe" do not.
    """

    # Common leetspeak substitutions
    LEET_MAP = str.maketrans({
        '0': 'o', '1': 'i', '3': 'e', '4': 'a',
        '5': 's', '7': 't', '@': 'a', '$': 's',
    })

    PROFANITY_WORDS: Set[str] = {
        'fuck', 'shit', 'bitch', 'ass', 'asshole', 'bastard', 'damn',
        'dick', 'cunt', 'piss', 'slut', 'whore', 'cock', 'pussy',
        'twat', 'wanker', 'bullshit', 'motherfucker', 'dickhead',
        'jackass', 'douche', 'douchebag', 'prick', 'skank',
    }

    # Compound roots (e.g. "motherfucking", "shitshow")
    PROFANITY_ROOTS = ('fuck', 'cunt', 'bitch', 'asshole', 'shit')

    INFLECTIONS = ('ing', 'in', 'ers', 'er', 'ed', 'es', 's', 'y')

    # Trailing punctuation kept when masking
    TRAILING_PUNCT = re.compile(r'[.,!?;:]+$')

    def __init__(self, extra_words: Set[str] = frozenset()):
        self.words = set(self.PROFANITY_WORDS) | {w.lower() for w in extra_words}
        self.non_letters = re.compile(r'[^a-z\s]')

    def normalize(self, text: str) -> str:
        """Lowercase, undo leetspeak, drop '*', turn other non-letters into spaces."""
        lowered = (text or "").lower().translate(self.LEET_MAP).replace('*', '')
        return self.non_letters.sub(' ', lowered)

    def is_profane_token(self, token: str) -> bool:
        if not token:
            return False
        if token in self.words:
            return True
        stems = [token] + [
            token[: -len(suffix)] for suffix in self.INFLECTIONS
            if token.endswith(suffix) and len(token) > len(suffix)
        ]
        if any(stem in self.words for stem in stems[1:]):
            return True
        return any(
            stem.startswith(root) or stem.endswith(root)
            for stem in stems for root in self.PROFANITY_ROOTS
        )

    def scan(self, caption: str) -> CaptionScan:
        normalized = self.normalize(caption)
        tokens = normalized.split()
        hits = [t for t in tokens if self.is_profane_token(t)]
        return CaptionScan(normalized=normalized, tokens=tokens, profanity_hits=hits)

    def find_profanity(self, caption: str) -> List[str]:
        return self.scan(caption).profanity_hits

    def mask(self, caption: str) -> str:
        """Replace each offending whitespace-delimited token with asterisks."""
        parts = re.split(r'(\s+)', caption or "")
        cleaned = []
        for part in parts:
            if not part or part.isspace():
                cleaned.append(part)
                continue
            if not any(self.is_profane_token(t) for t in self.normalize(part).split()):
                cleaned.append(part)
                continue
            match = self.TRAILING_PUNCT.search(part)
            tail = match.group(0) if match else ""
            core = part[: len(part) - len(tail)]
            cleaned.append('*' * len(core) + tail)
        return ''.join(cleaned)
