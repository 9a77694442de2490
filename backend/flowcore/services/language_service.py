# /flowcore/services/language_service.py

import re
from typing import List, Protocol

# Script based language detection and word segmentation. Ideographic scripts
# have no spaces between words, so each ideograph or kana counts as a word.

DEFAULT_LANG = "en"

_IDEOGRAPHS = "぀-ヿ㐀-䶿一-鿿豈-﫿가-힯"
_WORD_RE = re.compile(f"[{_IDEOGRAPHS}]|[^\\W_{_IDEOGRAPHS}]+")

_SCRIPTS = (
    ("ja", re.compile("[぀-ヿ]")),
    ("ko", re.compile("[가-힯]")),
    ("zh", re.compile("[一-鿿㐀-䶿]")),
    ("th", re.compile("[฀-๿]")),
    ("hi", re.compile("[ऀ-ॿ]")),
    ("ar", re.compile("[؀-ۿ]")),
    ("ru", re.compile("[Ѐ-ӿ]")),
)

# A script must cover this share of the letters before it wins over Latin text.
_MIN_SCRIPT_SHARE = 0.2


class LanguageDetector(Protocol):
    def detect(self, text: str) -> str: ...


def segment_words(text: str) -> List[str]:
    return _WORD_RE.findall(text)


def has_ideographs(text: str) -> bool:
    return bool(re.search(f"[{_IDEOGRAPHS}]", text))


class ScriptLanguageDetector:
    def detect(self, text: str) -> str:
        """Returns an ISO-639-1 code, "en" when the text is empty or ambiguous."""
        if not text or not text.strip():
            return DEFAULT_LANG
        letters = sum(1 for ch in text if ch.isalpha())
        if not letters:
            return DEFAULT_LANG
        # Kana marks Japanese even when most characters are kanji.
        if _SCRIPTS[0][1].search(text):
            return "ja"
        best, best_count = DEFAULT_LANG, 0
        for lang, pattern in _SCRIPTS[1:]:
            count = len(pattern.findall(text))
            if count > best_count:
                best, best_count = lang, count
        if best_count / letters >= _MIN_SCRIPT_SHARE:
            return best
        return DEFAULT_LANG


# Globally accessible instance
language_detector = ScriptLanguageDetector()
