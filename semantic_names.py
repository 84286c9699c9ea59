# semantic_names.py
"""
Best-effort mapping from a step description to a storage key.

"Fetch payment methods" -> "payment_method_id". The output is a hint only;
step-scoped keys (step{N}_{field}) stay the reliable source of truth.
"""
import re
from typing import List, Optional, Pattern

EXPLICIT_ID_PATTERN: Pattern = re.compile(r"\b([a-z][a-z0-9]*(?:_[a-z0-9]+)*_id)\b")

# Recognized description shapes. The first group captures the entity phrase.
DESCRIPTION_PATTERNS: List[Pattern] = [
    re.compile(
        r"^(?:fetch|get|find|retrieve|list|load|read|look\s*up|search(?:\s+for)?|query)\s+"
        r"(.+?)(?:\s+(?:by|for|with|from|where|that|which|to|in|of|on|using)\b.*)?$"
    ),
    re.compile(
        r"^(?:create|add|make|register|insert|post)\s+(?:a\s+|an\s+)?(?:new\s+)?"
        r"(.+?)(?:\s+(?:for|with|by|in|to|on|using)\b.*)?$"
    ),
]

FILTER_PREPOSITIONS = {"for", "by", "of", "with", "from", "where", "to", "in", "on", "using"}

LEADING_FILLER_WORDS = {"all", "the", "a", "an", "available", "existing", "current", "some", "every", "any", "my", "list", "of"}
TRAILING_NOISE_WORDS = {"details", "detail", "info", "information", "list", "data", "records", "record", "ids", "id"}

IRREGULAR_SINGULARS = {"people": "person", "children": "child", "statuses": "status", "addresses": "address"}


def singularize(word: str) -> str:
    if word in IRREGULAR_SINGULARS:
        return IRREGULAR_SINGULARS[word]
    if word.endswith("ies") and len(word) > 3:
        return word[:-3] + "y"
    if word.endswith(("sses", "shes", "ches", "xes", "zes")):
        return word[:-2]
    if word.endswith("s") and not word.endswith(("ss", "us", "is")):
        return word[:-1]
    return word


def _clean(text: str) -> str:
    return re.sub(r"[^a-z0-9_\s]", " ", text.lower()).strip()


def infer_semantic_key(description: str) -> Optional[str]:
    """Infers a semantic id key such as 'role_id' from a step description, or None."""
    if not description:
        return None
    text = re.sub(r"\s+", " ", _clean(description))

    for pattern in DESCRIPTION_PATTERNS:
        match = pattern.match(text)
        if not match:
            continue
        words = match.group(1).split()
        while words and words[0] in LEADING_FILLER_WORDS:
            words = words[1:]
        while words and words[-1] in TRAILING_NOISE_WORDS:
            words = words[:-1]
        if not words:
            continue
        if EXPLICIT_ID_PATTERN.fullmatch(words[-1]):
            return words[-1]
        words[-1] = singularize(words[-1])
        return "_".join(words) + "_id"

    # An '*_id' after a preposition names a filter ("roles for user_id 5"), not the fetched object.
    words = text.split()
    for index, word in enumerate(words):
        if EXPLICIT_ID_PATTERN.fullmatch(word) and (index == 0 or words[index - 1] not in FILTER_PREPOSITIONS):
            return word
    return None


def resource_words(field_name: str) -> List[str]:
    """'payment_method_id' -> ['payment', 'method']."""
    base = re.sub(r"_id$", "", field_name.lower())
    return [w for w in base.split("_") if w]


def field_matches_description(field_name: str, description: str) -> bool:
    """True when the resource named by an *_id field is mentioned in a step description."""
    words = resource_words(field_name)
    if not words or not description:
        return False
    text = _clean(description)
    phrase = " ".join(words)
    if phrase in text or singularize(phrase) in text:
        return True
    return all(word in text or singularize(word) in text for word in words)
