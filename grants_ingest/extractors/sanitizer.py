"""
Prompt input sanitization for model-assisted extraction.

Scraped text is untrusted: delimiters, role markers, injection
phrases and model control tokens are removed before interpolation.
"""

import re
from typing import Iterable, Optional

NOT_PROVIDED = "Not provided"
FILTERED = "[filtered]"

_REMOVE = [
    re.compile(r"```"),
    re.compile(r"---"),
    re.compile(r"\b(system|assistant|user)\s*:", re.IGNORECASE),
]

_INJECTION = [
    re.compile(r"ignore\s+(all\s+)?(previous|above|prior)\s+(instructions?|prompts?|rules?)", re.IGNORECASE),
    re.compile(r"you\s+are\s+now\s+", re.IGNORECASE),
    re.compile(r"new\s+instructions?\s*:", re.IGNORECASE),
    re.compile(r"disregard\s+(all\s+)?(previous|above|prior)\s+(instructions?|context)", re.IGNORECASE),
    re.compile(r"override\s+(system|previous|all)\s+(prompt|instructions?|rules?)", re.IGNORECASE),
    re.compile(r"forget\s+(everything|all|previous)\s+(above|instructions?|context)?", re.IGNORECASE),
]

_CONTROL_TOKENS = re.compile(
    r"\[INST\]|</?s>|<\|im_start\|>|<\|im_end\|>|<\|endoftext\|>|<\|system\|>|<\|user\|>|<\|assistant\|>",
    re.IGNORECASE,
)

_STRUCTURE_TAGS = re.compile(r"</?(?:system|instruction|prompt|context|role|message)>", re.IGNORECASE)


def sanitize_prompt_input(value: Optional[str], max_length: int = 2000) -> str:
    """
    Make untrusted text safe to interpolate into a prompt.

    Args:
        value: Raw text (None/empty allowed)
        max_length: Length cap applied after filtering

    Returns:
        Sanitized text, or "Not provided" when nothing remains
    """
    if not value:
        return NOT_PROVIDED

    text = value
    for pattern in _REMOVE:
        text = pattern.sub("", text)
    for pattern in _INJECTION:
        text = pattern.sub(FILTERED, text)
    text = _CONTROL_TOKENS.sub("", text)
    text = _STRUCTURE_TAGS.sub("", text)

    text = text[:max_length].strip()
    return text or NOT_PROVIDED


def sanitize_prompt_list(
    values: Optional[Iterable[str]],
    max_item_length: int = 200,
    max_items: int = 20,
) -> str:
    """Sanitize a list of values and join them with commas."""
    items = [
        sanitize_prompt_input(value, max_item_length)
        for value in list(values or [])[:max_items]
    ]
    joined = ", ".join(item for item in items if item != NOT_PROVIDED)
    return joined or NOT_PROVIDED
