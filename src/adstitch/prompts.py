"""
Prompt assembly for video generation requests.

- Negative prompt: static face-quality terms, plus a child-safety addendum
  when any input frame was classified as showing a minor.
- Sanitizer: rewrites child-related terms to "young adults", which avoids
  most moderation flags (provider code E005).
- Family-safe augmentation: used for the single retry after a moderation
  rejection.
"""

import re
from typing import List, Optional, Tuple

from .logger import logger

SKIN_IMPERFECTION_NEGATIVE_PROMPT = (
    "pimples, acne, blemishes, blackheads, whiteheads, spots, marks, scars, "
    "skin discoloration, redness, irritation, rashes, skin texture issues, "
    "visible pores, skin imperfections"
)

CHILD_SAFETY_NEGATIVE_PROMPT = (
    "children, kids, toddlers, babies, minors, teenagers, childlike features, "
    "young-looking faces, school uniforms"
)

FAMILY_SAFE_SUFFIX = (
    "Safe for all audiences. Adults only, fully clothed, friendly and "
    "non-violent, no suggestive content, professional advertising footage."
)

# Longer phrases first so they are not partially rewritten by shorter ones
CHILD_TERM_REPLACEMENTS: List[Tuple[str, str]] = [
    (r"\byoung children\b", "young adults"),
    (r"\bchildren's\b", "young adults'"),
    (r"\bchildren\b", "young adults"),
    (r"\bkids'", "young adults'"),
    (r"\bkids\b", "young adults"),
    (r"\btoddlers\b", "young adults"),
    (r"\bbabies\b", "young adults"),
    (r"\bminors\b", "young adults"),
    (r"\badolescents\b", "young adults"),
    (r"\bteenagers\b", "young adults"),
    (r"\bteenage\b", "young adult"),
    (r"\ba teen\b", "a young adult"),
    (r"\bthe teen\b", "the young adult"),
    (r"\bteens\b", "young adults"),
    (r"\bteen\b", "young adult"),
    (r"\bthe youth\b", "young adults"),
    (r"\byouth\b", "young adults"),
]

_COMPILED_REPLACEMENTS = [(re.compile(p, re.IGNORECASE), r) for p, r in CHILD_TERM_REPLACEMENTS]


def build_negative_prompt(extra: Optional[str] = None, child_safety: bool = False) -> str:
    """Join the static terms, the optional addendum and caller terms."""
    parts = [SKIN_IMPERFECTION_NEGATIVE_PROMPT]
    if child_safety:
        parts.append(CHILD_SAFETY_NEGATIVE_PROMPT)
    if extra and extra.strip():
        parts.append(extra.strip())
    return ", ".join(parts)


def sanitize_prompt(prompt: str) -> str:
    """Rewrite child-related terms to "young adults"."""
    if not prompt:
        return prompt
    sanitized = prompt
    for pattern, replacement in _COMPILED_REPLACEMENTS:
        sanitized = pattern.sub(replacement, sanitized)
    if sanitized != prompt:
        logger.debug(f"[Prompts] Sanitized prompt: {prompt!r} -> {sanitized!r}")
    return sanitized


def family_safe_prompt(prompt: str) -> str:
    """Sanitized prompt with an explicit safe-for-all-audiences instruction."""
    sanitized = sanitize_prompt(prompt).strip()
    if FAMILY_SAFE_SUFFIX in sanitized:
        return sanitized
    if sanitized and not sanitized.endswith((".", "!", "?")):
        sanitized += "."
    return f"{sanitized} {FAMILY_SAFE_SUFFIX}".strip()
