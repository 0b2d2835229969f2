"""Script-based detection of the translation direction for copied text."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, Mapping, Optional, Pattern, Tuple


logger = logging.getLogger("llmcliptranslator.language")

DEFAULT_DIRECTION = ("en", "ru")

CYRILLIC = r"[\u0400-\u04FF\u0500-\u052F\u1C80-\u1C8F\u2DE0-\u2DFF\uA640-\uA69F]"
LATIN = (
    r"[A-Za-z\u00AA\u00BA\u00C0-\u00D6\u00D8-\u00F6\u00F8-\u024F"
    r"\u1E00-\u1EFF\u2C60-\u2C7F\uA720-\uA7FF\uFF21-\uFF3A\uFF41-\uFF5A]"
)
GREEK = r"[\u0370-\u03FF\u1F00-\u1FFF]"
ARABIC = r"[\u0600-\u06FF\u0750-\u077F\u08A0-\u08FF\uFB50-\uFDFF\uFE70-\uFEFF]"
HEBREW = r"[\u0590-\u05FF\uFB1D-\uFB4F]"
HAN = r"[\u3400-\u4DBF\u4E00-\u9FFF\uF900-\uFAFF]"
JAPANESE = r"[\u3040-\u309F\u30A0-\u30FF\u31F0-\u31FF\u3400-\u4DBF\u4E00-\u9FFF]"
HANGUL = r"[\u1100-\u11FF\u3130-\u318F\uAC00-\uD7AF]"
THAI = r"[\u0E00-\u0E7F]"
DEVANAGARI = r"[\u0900-\u097F]"

BUILTIN_PATTERNS: Dict[str, str] = {
    "en": LATIN,
    "ru": CYRILLIC,
    "uk": CYRILLIC,
    "be": CYRILLIC,
    "bg": CYRILLIC,
    "sr": CYRILLIC,
    "kk": CYRILLIC,
    "mn": CYRILLIC,
    "el": GREEK,
    "ar": ARABIC,
    "fa": ARABIC,
    "he": HEBREW,
    "ja": JAPANESE,
    "zh": HAN,
    "ko": HANGUL,
    "th": THAI,
    "hi": DEVANAGARI,
}


@dataclass(frozen=True)
class LanguageConfig:
    """Ordered candidate languages, the user's native language first."""

    codes: Tuple[str, ...] = ()
    patterns: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "codes", tuple(code.lower() for code in self.codes))
        object.__setattr__(
            self,
            "patterns",
            {str(code).lower(): pattern for code, pattern in dict(self.patterns).items()},
        )


def builtin_pattern(code: str) -> str:
    return BUILTIN_PATTERNS.get(code, LATIN)


def compile_pattern(code: str, override: Optional[str] = None) -> Pattern[str]:
    """Return the detection regex for ``code``.

    A blank override is ignored. An override that does not compile falls back
    to the built-in pattern so detection never blocks a translation.
    """

    if override is not None and override.strip():
        try:
            return re.compile(override)
        except re.error as exc:
            logger.warning("Invalid detection pattern for %r (%s); using default", code, exc)
    return re.compile(builtin_pattern(code))


def complementary_language(source: str) -> str:
    return "ru" if source == "en" else "en"


def count_matches(pattern: Pattern[str], text: str) -> int:
    return sum(1 for _ in pattern.finditer(text))


class LanguageDetector:
    """Pick ``(source, target)`` by counting characters of each script."""

    def __init__(self, config: LanguageConfig) -> None:
        self.config = config
        self._patterns: Dict[str, Pattern[str]] = {
            code: compile_pattern(code, config.patterns.get(code)) for code in config.codes
        }

    @property
    def codes(self) -> Tuple[str, ...]:
        return self.config.codes

    def scores(self, text: str) -> Dict[str, int]:
        return {code: count_matches(self._patterns[code], text) for code in self.codes}

    def determine_direction(self, text: str) -> Tuple[str, str]:
        codes = self.codes
        if not codes:
            return DEFAULT_DIRECTION

        # Seeded below any real count so the first code wins ties, zero included.
        counts = self.scores(text)
        best_code = codes[0]
        best_count = -1
        for code in codes:
            count = counts[code]
            if count > best_count:
                best_code, best_count = code, count

        source = best_code
        target = next((code for code in codes if code != source), None)
        if target is None:
            target = complementary_language(source)
        logger.debug("Detected direction %s -> %s (best count %d)", source, target, best_count)
        return source, target


def resolve_direction(text: str, config: LanguageConfig) -> Tuple[str, str]:
    return LanguageDetector(config).determine_direction(text)


def make_config(codes: Iterable[str], patterns: Optional[Mapping[str, str]] = None) -> LanguageConfig:
    return LanguageConfig(codes=tuple(codes), patterns=dict(patterns or {}))
