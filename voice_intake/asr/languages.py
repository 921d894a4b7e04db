"""Language codes accepted by the transcription provider.

Callers pass ISO 639-1 short codes. The provider may answer with a
long-form language name, which is mapped back to a short code before
persistence.
"""

DEFAULT_LANGUAGE = "es"

# Column width for language_detected.
MAX_LANGUAGE_CODE_LENGTH = 5

VALID_LANGUAGES: tuple[str, ...] = (
    "es", "en", "pt", "fr", "de", "it", "ja", "ko", "zh",
    "nl", "ru", "ar", "hi", "tr", "pl", "sv", "no", "da",
    "fi", "el", "cs", "ro", "hu", "th", "id", "ms", "vi",
    "uk", "ca", "hr", "bg", "sk", "sl", "sr", "he", "fa",
)

LANGUAGE_NAME_TO_CODE: dict[str, str] = {
    "spanish": "es", "english": "en", "portuguese": "pt", "french": "fr",
    "german": "de", "italian": "it", "japanese": "ja", "korean": "ko",
    "chinese": "zh", "dutch": "nl", "russian": "ru", "arabic": "ar",
    "hindi": "hi", "turkish": "tr", "polish": "pl", "swedish": "sv",
    "norwegian": "no", "danish": "da", "finnish": "fi", "greek": "el",
    "czech": "cs", "romanian": "ro", "hungarian": "hu", "thai": "th",
    "indonesian": "id", "malay": "ms", "vietnamese": "vi", "ukrainian": "uk",
    "catalan": "ca", "croatian": "hr", "bulgarian": "bg", "slovak": "sk",
    "slovenian": "sl", "serbian": "sr", "hebrew": "he", "persian": "fa",
}


def normalize_language_hint(
    language: str | None, default: str = DEFAULT_LANGUAGE
) -> str:
    """Return a supported short code for the provider request.

    Unknown or absent hints fall back to `default`.
    """
    if not language:
        return default
    code = language.strip().lower()
    if code in VALID_LANGUAGES:
        return code
    mapped = LANGUAGE_NAME_TO_CODE.get(code)
    return mapped or default


def normalize_language_code(language: str | None) -> str | None:
    """Map a provider language value to a short code for storage.

    Short values pass through. Known long names are mapped; anything else
    is truncated to the column width rather than rejected.
    """
    if not language:
        return None
    if len(language) <= MAX_LANGUAGE_CODE_LENGTH:
        return language
    return LANGUAGE_NAME_TO_CODE.get(
        language.lower(), language[:MAX_LANGUAGE_CODE_LENGTH]
    )
