"""Name normalization shared by every cross-catalog comparison.

Last.fm and Spotify spell the same artist or title with different casing,
spacing and punctuation. All equality checks in the pipeline go through
normalize_name so the matching policy can be tuned in one place.
"""

import re
import unicodedata

_PUNCTUATION = re.compile(r"[^\w\s]", re.UNICODE)
_WHITESPACE = re.compile(r"\s+")


def normalize_name(value: str | None) -> str:
    """Case-fold, trim and strip punctuation from an artist or track name.

    Diacritics are kept ("Múm" and "Mum" stay different artists). Names made
    only of punctuation (e.g. "!!!") fall back to their case-folded form
    rather than collapsing to an empty string.
    """
    if not value:
        return ""
    text = unicodedata.normalize("NFKC", value).casefold().strip()
    text = text.replace("&", " and ")
    stripped = _PUNCTUATION.sub(" ", text).replace("_", " ")
    stripped = _WHITESPACE.sub(" ", stripped).strip()
    if stripped:
        return stripped
    return _WHITESPACE.sub(" ", text).strip()
