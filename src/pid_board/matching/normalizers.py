import unicodedata
from functools import lru_cache


@lru_cache(maxsize=16384)
def remove_accents(text: str) -> str:
    """Remove accents from text.

    Example: "Můstek" -> "Mustek"
    """
    # Normalize to NFD (decomposes accented characters)
    normalized = unicodedata.normalize("NFD", text)
    # Remove combining diacritical marks
    stripped = "".join(c for c in normalized if unicodedata.category(c) != "Mn")
    return unicodedata.normalize("NFC", stripped)


@lru_cache(maxsize=16384)
def normalize_text(text: str | None) -> str:
    """Normalize a stop name or query into a search key.

    - Removes accents
    - Converts to lowercase
    - Trims surrounding whitespace

    Inner whitespace and punctuation are kept so that keys stay substring-comparable.

    Example: "Národní muzeum" -> "narodni muzeum"
    Example: "  Můstek " -> "mustek"
    """
    if not text or not text.strip():
        return ""
    return remove_accents(text.strip()).lower()
