"""
Narration parser for segment audio notes.

Audio notes mix spoken lines with production notes ("upbeat music, door
slam"). Only two explicit forms are treated as speech:

    Dialogue: <speaker> says[ <manner>]: '<text>'
    Voiceover: '<text>'          (also "Voice-over:", "VO:", "Narrator:")

The quoted text runs from the opening quote to the last matching,
unescaped quote of the same kind. Anything else yields no narration; a
missing line is preferred over reading production notes aloud.
"""

import re
from dataclasses import dataclass
from typing import Optional, Tuple

DIALOGUE_PREFIX = re.compile(r"Dialogue:\s*(.+?)\s+says(?:[^:]+)?:\s*(['\"])", re.IGNORECASE)
DIALOGUE_FALLBACK = re.compile(r"Dialogue:\s*(.+?)\s+says(?:[^:]+)?:\s*['\"](.+?)['\"]", re.IGNORECASE)
VOICEOVER_PREFIX = re.compile(r"(?:Voice[\s-]?over|VO|Narrator)\s*:\s*(['\"])", re.IGNORECASE)

# Markers of a line the script writer left unfinished
TRAILING_NOISE = re.compile(r"(?:\.\.\.|[*…])+$")
GIBBERISH_MARKER = re.compile(r"\*gibberish.*$", re.IGNORECASE)
INCOMPLETE_MARKER = re.compile(r"\*incomplete.*$", re.IGNORECASE)
CORRUPTED_WORD = re.compile(r"\w+\*$")

CTA_MAX_WORDS = 5
DEFAULT_SPEAKER = "The character"


@dataclass(frozen=True)
class Narration:
    speaker: str
    text: str
    kind: str  # "dialogue" | "voiceover"


def _closing_quote(text: str, start: int, quote: str) -> int:
    """Index of the last unescaped ``quote`` at or after ``start``, or -1."""
    for i in range(len(text) - 1, start - 1, -1):
        if text[i] == quote and (i == 0 or text[i - 1] != "\\"):
            return i
    return -1


def _looks_unfinished(text: str) -> bool:
    lowered = text.lower()
    return (
        text.endswith("*")
        or text.endswith("...")
        or text.endswith("…")
        or "*gibberish" in lowered
        or "*incomplete" in lowered
        or CORRUPTED_WORD.search(text) is not None
    )


def clean_spoken_text(text: str) -> Optional[str]:
    """
    Strip unfinished-line markers.

    Returns None when nothing usable remains (empty, or a single word left
    after removing markers).
    """
    text = text.strip()
    if not text:
        return None
    if not _looks_unfinished(text):
        return text

    cleaned = TRAILING_NOISE.sub("", text)
    cleaned = GIBBERISH_MARKER.sub("", cleaned)
    cleaned = INCOMPLETE_MARKER.sub("", cleaned)
    cleaned = CORRUPTED_WORD.sub("", cleaned).strip()
    if not cleaned or len(cleaned.split()) < 2:
        return None
    return cleaned


def _quoted_body(notes: str, prefix_end: int, quote: str) -> Optional[str]:
    close = _closing_quote(notes, prefix_end, quote)
    if close == -1:
        return None
    return notes[prefix_end:close].replace("\\" + quote, quote)


def parse_dialogue(notes: Optional[str]) -> Optional[Narration]:
    """Parse the ``Dialogue: X says: '...'`` form."""
    if not notes or not notes.strip():
        return None
    match = DIALOGUE_PREFIX.search(notes)
    if not match:
        return None

    speaker = match.group(1).strip()
    body = _quoted_body(notes, match.end(), match.group(2))
    if body is None:
        fallback = DIALOGUE_FALLBACK.search(notes)
        if not fallback:
            return None
        body = fallback.group(2)

    text = clean_spoken_text(body)
    if text is None:
        return None
    return Narration(speaker=speaker, text=text, kind="dialogue")


def parse_voiceover(notes: Optional[str]) -> Optional[Narration]:
    """Parse the ``Voiceover: '...'`` form (quotes required)."""
    if not notes or not notes.strip():
        return None
    match = VOICEOVER_PREFIX.search(notes)
    if not match:
        return None
    body = _quoted_body(notes, match.end(), match.group(1))
    if body is None:
        return None
    text = clean_spoken_text(body)
    if text is None:
        return None
    return Narration(speaker="Narrator", text=text, kind="voiceover")


def parse_narration(notes: Optional[str]) -> Optional[Narration]:
    """Dialogue takes precedence over voiceover when both appear."""
    return parse_dialogue(notes) or parse_voiceover(notes)


def extract_narration_text(notes: Optional[str]) -> Optional[str]:
    narration = parse_narration(notes)
    return narration.text if narration else None


def format_dialogue(speaker: str, text: str) -> str:
    """Inverse of parse_dialogue; empty string when there is nothing to say."""
    if not text.strip():
        return ""
    speaker = speaker.strip() or DEFAULT_SPEAKER
    return f"Dialogue: {speaker} says: '{text.strip()}'"


def dialogue_word_count(text: Optional[str]) -> int:
    if not text or not text.strip():
        return 0
    return len(text.split())


def validate_cta_dialogue(text: Optional[str]) -> Tuple[bool, str]:
    """CTA lines must be short enough to land in the final seconds."""
    count = dialogue_word_count(text)
    if count > CTA_MAX_WORDS:
        return False, f"CTA dialogue must be {CTA_MAX_WORDS} words or less (currently {count} words)"
    return True, ""
