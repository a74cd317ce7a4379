"""
Heuristic language detection over transcript text.
"""

import re
import logging

from videoscribe.core.constants import BASELINE_LANGUAGE

logger = logging.getLogger(__name__)

# Order matters: earlier entries win ties.
_LANGUAGE_PATTERNS = [
    ('en', re.compile(r'[a-zA-Z]')),
    ('hi', re.compile(r'[\u0900-\u097F]')),
    ('zh', re.compile(r'[\u4E00-\u9FFF]')),
    ('ja', re.compile(r'[\u3040-\u309F\u30A0-\u30FF]')),
    ('ko', re.compile(r'[\uAC00-\uD7AF]')),
    ('ar', re.compile(r'[\u0600-\u06FF]')),
    ('es', re.compile(r'[ñáéíóúü]', re.IGNORECASE)),
    ('fr', re.compile(r'[àâäéèêëïîôöùûüÿç]', re.IGNORECASE)),
    ('de', re.compile(r'[äöüß]', re.IGNORECASE)),
    ('ru', re.compile(r'[\u0400-\u04FF]')),
    ('pt', re.compile(r'[ãõç]', re.IGNORECASE)),
    ('it', re.compile(r'[àèéìíîòóù]', re.IGNORECASE)),
]


class LanguageDetector:
    """Strategy interface: detect(text) -> language code. Must never raise."""

    default = BASELINE_LANGUAGE

    def detect(self, text: str) -> str:
        raise NotImplementedError


class CharacterRangeDetector(LanguageDetector):
    """
    Counts characters in each language's script range / diacritic set and
    returns the language with the highest count.

    Latin-script languages share the 'en' range, so a Spanish text mostly
    scores as 'en'; the diacritic classes only win on short or
    diacritic-heavy input. Good enough to route downstream prompts.
    """

    def __init__(self, patterns=None, default: str = BASELINE_LANGUAGE):
        self.patterns = list(patterns or _LANGUAGE_PATTERNS)
        self.default = default

    def scores(self, text: str) -> dict[str, int]:
        return {lang: len(pattern.findall(text)) for lang, pattern in self.patterns}

    def detect(self, text: str) -> str:
        if not text:
            return self.default
        scores = self.scores(text)
        best_lang, best_score = self.default, 0
        for lang, _ in self.patterns:
            if scores[lang] > best_score:
                best_lang, best_score = lang, scores[lang]
        return best_lang
