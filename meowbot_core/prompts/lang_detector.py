"""Language detection for prompts.

Texts of at least MIN_DETECT_LENGTH characters go through lingua, restricted
to the supported languages. Shorter texts, and texts lingua cannot decide,
fall back to a character-range heuristic.
"""

import re
from functools import lru_cache
from typing import Optional

from lingua import Language, LanguageDetector, LanguageDetectorBuilder

SUPPORTED_LANGS = {
    "en": Language.ENGLISH,
    "vi": Language.VIETNAMESE,
    "fr": Language.FRENCH,
    "de": Language.GERMAN,
    "es": Language.SPANISH,
    "zh": Language.CHINESE,
    "ja": Language.JAPANESE,
    "ko": Language.KOREAN,
}
DEFAULT_LANG = "en"
MIN_DETECT_LENGTH = 10

LANGUAGE_NAMES = {
    "en": "English",
    "vi": "Tiếng Việt",
    "fr": "Français",
    "de": "Deutsch",
    "es": "Español",
    "zh": "中文",
    "ja": "日本語",
    "ko": "한국어",
}

# Vietnamese-only letters (horn/breve vowels, đ) and the tone-marked block
_VIETNAMESE = re.compile(r"[ăđơưĂĐƠƯẠ-ỹ]")
_KANA = re.compile(r"[぀-ヿ]")
_HANGUL = re.compile(r"[가-힯ᄀ-ᇿ]")
_HAN = re.compile(r"[㐀-䶿一-鿿豈-﫿]")
_GERMAN = re.compile(r"[äöüßÄÖÜ]")
_SPANISH = re.compile(r"[ñ¿¡Ñ]")
_FRENCH = re.compile(r"[çœëîïûÇŒ]")
# any other accented latin letter: Vietnamese without distinctive letters ("chào")
_LATIN_ACCENT = re.compile(r"[À-ſ]")


@lru_cache(maxsize=1)
def _detector() -> LanguageDetector:
    return LanguageDetectorBuilder.from_languages(*SUPPORTED_LANGS.values()).build()


def _detect_with_model(text: str) -> Optional[str]:
    detected = _detector().detect_language_of(text)
    if detected is None:
        return None
    for code, language in SUPPORTED_LANGS.items():
        if detected == language:
            return code
    return None


def detect_language(text: str, default: str = DEFAULT_LANG) -> str:
    if not text or not text.strip():
        return default
    if len(text.strip()) >= MIN_DETECT_LENGTH:
        detected = _detect_with_model(text)
        if detected is not None:
            return detected
    return _detect_by_script(text, default)


def _detect_by_script(text: str, default: str) -> str:
    if _VIETNAMESE.search(text):
        return "vi"
    # kana/hangul before han: Japanese and Korean text may also contain han
    if _KANA.search(text):
        return "ja"
    if _HANGUL.search(text):
        return "ko"
    if _HAN.search(text):
        return "zh"
    if _GERMAN.search(text):
        return "de"
    if _SPANISH.search(text):
        return "es"
    if _FRENCH.search(text):
        return "fr"
    if _LATIN_ACCENT.search(text):
        return "vi"
    return default


def get_language_name(lang: str) -> str:
    return LANGUAGE_NAMES.get(lang, "Unknown")
