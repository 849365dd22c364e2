"""
Turn the model's (untrusted) answer into a line replacement map.

The model is asked for {"replacements": [{lineIndex, originalLine,
tailoredLine, shouldTailor}, ...]} but may wrap it in prose, drop indices,
renumber lines, skip lines, or return far longer text than asked. Whatever
it does, reconcile() returns a map with exactly one entry per logical line.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from errors import InvalidAIResponse
from rewrite_prompt import REPLACEMENTS_FIELD

logger = logging.getLogger(__name__)

RECORD_FIELDS = (REPLACEMENTS_FIELD, "lines")

# A replacement longer than MAX_LENGTH_RATIO x the original is cut back to
# TRUNCATE_RATIO x the original, at a word boundary.
MAX_LENGTH_RATIO = 1.8
TRUNCATE_RATIO = 1.5

MATCHED_BY_INDEX = "index"
MATCHED_BY_CONTENT = "content"


@dataclass
class ReplacementRecord:
    original_line: str
    tailored_line: str
    line_index: Optional[int] = None


@dataclass
class Reconciliation:
    replacements: Dict[int, str]
    matched_by: Dict[int, str] = field(default_factory=dict)
    skipped: int = 0
    truncated: List[int] = field(default_factory=list)


# ===================== JSON LOCATION =====================

def _balanced_end(text: str, start: int) -> Optional[int]:
    """Index of the '}' closing the '{' at `start`, ignoring braces inside strings."""
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i
    return None


def extract_json_object(text: str) -> Dict[str, Any]:
    """
    Find the first balanced {...} span in `text` that parses as a JSON object.
    Handles markdown fences and chatty preambles around the JSON.
    """
    if not isinstance(text, str):
        raise InvalidAIResponse("AI response was empty.")

    start = text.find("{")
    while start != -1:
        end = _balanced_end(text, start)
        if end is not None:
            try:
                obj = json.loads(text[start : end + 1])
            except ValueError:
                obj = None
            if isinstance(obj, dict):
                return obj
        start = text.find("{", start + 1)

    raise InvalidAIResponse("AI response did not contain a valid JSON object.")


def parse_replacement_records(text: str) -> List[Any]:
    data = extract_json_object(text)
    for key in RECORD_FIELDS:
        if key in data:
            records = data[key]
            if not isinstance(records, list):
                raise InvalidAIResponse(f"AI response field '{key}' is not an array.")
            return records
    raise InvalidAIResponse(f"AI response is missing the '{REPLACEMENTS_FIELD}' array.")


# ===================== RECORD HELPERS =====================

def _coerce_index(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        s = value.strip()
        if s.isascii() and s.isdigit():
            return int(s)
    return None


def _is_false(value: Any) -> bool:
    if value is False:
        return True
    return isinstance(value, str) and value.strip().lower() == "false"


def _collapse(text: str) -> str:
    return " ".join(text.split())


def normalize_for_match(text: str) -> str:
    return _collapse(text).lower()


def coerce_record(raw: Any) -> Optional[ReplacementRecord]:
    """Validate one record; None means skip it."""
    if not isinstance(raw, dict):
        return None
    if _is_false(raw.get("shouldTailor")):
        return None

    original = raw.get("originalLine")
    tailored = raw.get("tailoredLine")
    if not isinstance(original, str) or not isinstance(tailored, str):
        return None
    original = _collapse(original)
    tailored = _collapse(tailored)
    if not original or not tailored:
        return None

    return ReplacementRecord(
        original_line=original,
        tailored_line=tailored,
        line_index=_coerce_index(raw.get("lineIndex")),
    )


def content_matches(line_norm: str, record_norm: str) -> bool:
    if not line_norm or not record_norm:
        return False
    return line_norm == record_norm or record_norm in line_norm or line_norm in record_norm


def normalize_length(original: str, replacement: str) -> str:
    """
    Cut runaway expansions back to TRUNCATE_RATIO x the original length,
    dropping the last partial word (hard cut if not even one word fits).
    """
    if not original or len(replacement) / len(original) <= MAX_LENGTH_RATIO:
        return replacement

    limit = int(len(original) * TRUNCATE_RATIO)
    head = replacement[:limit]
    if replacement[limit].isspace():
        return head.rstrip() or head

    boundary = head.rfind(" ")
    if boundary <= 0:
        return head
    return head[:boundary].rstrip()


# ===================== RECONCILIATION =====================

def _find_content_match(
    normalized_lines: Sequence[str],
    record_norm: str,
    bound: Dict[int, str],
) -> Optional[int]:
    # First unbound match in document order. Short or repeated lines can
    # produce false positives here.
    for i, line_norm in enumerate(normalized_lines):
        if i in bound:
            continue
        if content_matches(line_norm, record_norm):
            return i
    return None


def reconcile(lines: Sequence[str], response_text: str) -> Reconciliation:
    """
    Map the model's replacement records onto line indices.

    1. A valid in-range lineIndex binds directly (later records for the same
       index overwrite earlier ones).
    2. Otherwise the record binds to the first not-yet-bound line whose text
       equals / contains / is contained in its originalLine.
    Every line left unbound keeps its original text.
    """
    records = parse_replacement_records(response_text)

    n = len(lines)
    normalized_lines = [normalize_for_match(t) for t in lines]
    bound: Dict[int, str] = {}
    matched_by: Dict[int, str] = {}
    skipped = 0

    for raw in records:
        record = coerce_record(raw)
        if record is None:
            skipped += 1
            continue

        idx = record.line_index
        if idx is not None and 0 <= idx < n:
            bound[idx] = record.tailored_line
            matched_by[idx] = MATCHED_BY_INDEX
            continue

        target = _find_content_match(normalized_lines, normalize_for_match(record.original_line), bound)
        if target is None:
            skipped += 1
            continue
        bound[target] = record.tailored_line
        matched_by[target] = MATCHED_BY_CONTENT

    replacements: Dict[int, str] = {}
    truncated: List[int] = []
    for i, original in enumerate(lines):
        new_text = bound.get(i)
        if new_text is None:
            replacements[i] = original
            continue
        fitted = normalize_length(original, new_text)
        if fitted != new_text:
            truncated.append(i)
        replacements[i] = fitted

    logger.info(
        "Reconciled %d records onto %d lines: %d bound, %d skipped, %d truncated",
        len(records), n, len(bound), skipped, len(truncated),
    )
    return Reconciliation(
        replacements=replacements,
        matched_by=matched_by,
        skipped=skipped,
        truncated=truncated,
    )


def reconcile_single(lines: Sequence[str], index: int, response_text: str) -> Tuple[str, Optional[str]]:
    """
    Pick the alternative for one line out of a re-roll answer.

    Returns (text, matched_by). Records aimed at a different valid index are
    ignored; with no usable record the original text comes back and
    matched_by is None.
    """
    records = parse_replacement_records(response_text)
    original = lines[index]
    target_norm = normalize_for_match(original)

    for raw in records:
        record = coerce_record(raw)
        if record is None:
            continue
        idx = record.line_index
        if idx == index:
            return normalize_length(original, record.tailored_line), MATCHED_BY_INDEX
        if (idx is None or not 0 <= idx < len(lines)) and content_matches(
            target_norm, normalize_for_match(record.original_line)
        ):
            return normalize_length(original, record.tailored_line), MATCHED_BY_CONTENT

    return original, None
