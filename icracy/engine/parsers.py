"""
Text parsing utilities for delegate responses.

Handles vote normalization, delegate output parsing (strict JSON, embedded
JSON, then prose heuristics), topic inference and rankings-page extraction.
"""

import json
import math
import re
from typing import Any

from .models import IDIOTIC, INTELLIGENT

DEFAULT_CONFIDENCE = 55
NO_ARGUMENT = "No argument returned."

_RANKED_ROW_PATTERN = re.compile(
    r'href="/([^"?#]+/[^"?#]+)">([^<]+)</a>[\s\S]*?'
    r"<div>([0-9]+(?:\.[0-9]+)?[KMBT])<!-- --> tokens</div>"
)

_TOKEN_MULTIPLIERS = {"K": 1e3, "M": 1e6, "B": 1e9, "T": 1e12}

_TOPIC_PATTERNS = [
    ("Economics", re.compile(r"econom|budget|tax|currency|credit|income")),
    ("Politics", re.compile(r"law|constitution|govern|policy|rights|vote")),
    ("Technology", re.compile(r"model|ai|compute|algorithm|robot|llm")),
    ("Ethics", re.compile(r"ethic|moral|justice|fair")),
    ("Climate", re.compile(r"climate|energy|planet|ecology")),
]


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def normalize_vote(vote: Any) -> str:
    """
    Collapse any vote text to Intelligent/Idiotic.

    Anything starting with "idi" (case-insensitive) is Idiotic, everything
    else is Intelligent. There is no abstain.
    """
    normalized = str(vote or "").strip().lower()
    if normalized.startswith("idi"):
        return IDIOTIC
    return INTELLIGENT


def flatten_content(content: Any) -> str:
    """
    Flatten an OpenRouter message content field into plain text.

    Content may be a string, a list of parts (strings or {'text'|'content'} dicts)
    or a single dict.
    """
    if isinstance(content, str):
        return content

    if isinstance(content, list):
        parts = []
        for item in content:
            if isinstance(item, str):
                parts.append(item)
            elif isinstance(item, dict):
                parts.append(str(item.get("text") or item.get("content") or ""))
            else:
                parts.append("")
        return "\n".join(parts).strip()

    if isinstance(content, dict):
        return str(content.get("text") or json.dumps(content))

    return ""


def maybe_parse_json_object(text: Any) -> dict[str, Any] | None:
    """
    Extract a JSON object from text.

    Tries the whole text first, then the substring between the first '{'
    and the last '}'. Returns None if neither yields an object.
    """
    if not text or not isinstance(text, str):
        return None

    try:
        parsed = json.loads(text)
        if isinstance(parsed, dict):
            return parsed
    except ValueError:
        pass

    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end == -1 or start >= end:
        return None

    try:
        parsed = json.loads(text[start : end + 1])
    except ValueError:
        return None
    return parsed if isinstance(parsed, dict) else None


def _json_confidence(value: Any) -> int:
    """Numeric JSON confidence clamped to [1, 100]; zero or non-numeric gives 55."""
    if isinstance(value, str):
        value = value.strip()
    try:
        number = float(value)
    except (TypeError, ValueError):
        number = 0.0
    if not number or math.isnan(number):
        number = DEFAULT_CONFIDENCE
    if math.isinf(number):
        number = 100 if number > 0 else 1
    return int(clamp(round_half_up(number), 1, 100))


def round_half_up(value: float) -> int:
    """Round with .5 going up, independent of banker's rounding."""
    return math.floor(value + 0.5)


def parse_delegate_output(raw_text: Any) -> dict[str, Any]:
    """
    Parse a delegate's raw output into a normalized vote record.

    Never fails. Degrades from strict JSON to embedded JSON to a regex
    heuristic over the flattened text.

    Args:
        raw_text: The delegate's raw text output

    Returns:
        Dict with 'vote', 'confidence', 'argument' and 'rebuttal'
    """
    fallback = re.sub(r"\s+", " ", str(raw_text or "")).strip()
    parsed = maybe_parse_json_object(raw_text)

    if parsed is not None:
        argument = parsed.get("argument") or parsed.get("reasoning") or fallback or NO_ARGUMENT
        rebuttal = parsed.get("rebuttal") or parsed.get("counterpoint") or ""
        return {
            "vote": normalize_vote(parsed.get("vote") or parsed.get("verdict")),
            "confidence": _json_confidence(parsed.get("confidence")),
            "argument": str(argument).strip(),
            "rebuttal": str(rebuttal).strip(),
        }

    vote_match = re.search(r"\b(Intelligent|Idiotic)\b", fallback, re.IGNORECASE)
    confidence_match = re.search(r"\b(\d{1,3})\s*%", fallback)

    return {
        "vote": normalize_vote(vote_match.group(1) if vote_match else INTELLIGENT),
        "confidence": (
            int(clamp(int(confidence_match.group(1)), 1, 100))
            if confidence_match
            else DEFAULT_CONFIDENCE
        ),
        "argument": fallback or NO_ARGUMENT,
        "rebuttal": "",
    }


def infer_topic(title: str, body: str) -> str:
    """Guess a topic tag from keywords in the title and body."""
    source = f"{title} {body}".lower()
    for topic, pattern in _TOPIC_PATTERNS:
        if pattern.search(source):
            return topic
    return "General"


def parse_abbreviated_tokens(value: Any) -> int:
    """
    Parse token counts such as "1.2B" or "850M" into an integer.

    Unsuffixed numbers are parsed as-is; anything else is 0.
    """
    if not value or not isinstance(value, str):
        return 0

    trimmed = value.strip().upper()
    match = re.match(r"^([0-9]+(?:\.[0-9]+)?)([KMBT])$", trimmed)
    if not match:
        try:
            return int(float(trimmed))
        except ValueError:
            return 0

    return int(float(match.group(1)) * _TOKEN_MULTIPLIERS[match.group(2)])


def extract_ranked_model_rows(html: str, limit: int) -> list[dict[str, Any]]:
    """
    Extract ranked model rows from the OpenRouter rankings page.

    Args:
        html: Rankings page HTML
        limit: Maximum number of rows to return

    Returns:
        List of dicts with 'rank', 'slug', 'display_name', 'token_text', 'token_value'
    """
    rows: list[dict[str, Any]] = []
    seen: set[str] = set()

    for match in _RANKED_ROW_PATTERN.finditer(html):
        slug = match.group(1).strip()
        if slug in seen:
            continue
        seen.add(slug)

        token_text = match.group(3).strip()
        rows.append(
            {
                "rank": len(rows) + 1,
                "slug": slug,
                "display_name": match.group(2).strip(),
                "token_text": token_text,
                "token_value": parse_abbreviated_tokens(token_text),
            }
        )

        if len(rows) >= limit:
            break

    return rows
