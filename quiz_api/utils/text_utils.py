import re
import unicodedata

_FENCE_START = re.compile(r"^```[a-zA-Z0-9_-]*\s*")
_FENCE_END = re.compile(r"\s*```\s*$")


def normalize_text(text: str) -> str:
    """
    Nettoie une chaîne : trim, unicodes normalisés, espaces réduits.
    """
    if not text:
        return ""
    text = text.strip()
    text = unicodedata.normalize("NFKC", text)
    text = re.sub(r"\s+", " ", text)
    return text


def strip_code_fence(text: str) -> str:
    """
    Retire un éventuel bloc ```json ... ``` autour d'une réponse de modèle.
    """
    if not text:
        return ""
    cleaned = _FENCE_START.sub("", text.strip(), count=1)
    cleaned = _FENCE_END.sub("", cleaned, count=1)
    return cleaned.strip()


def truncate(text: str, max_chars: int) -> str:
    if max_chars <= 0:
        return ""
    return text if len(text) <= max_chars else text[:max_chars]
