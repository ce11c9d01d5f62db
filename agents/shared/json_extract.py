"""
Project Meridian - Response Extraction

Turns free-form LLM output into structured JSON.
Each helper handles one failure mode; parse_json_response() chains them:
fence-strip -> direct parse -> repair (if truncated) -> brace-extract -> default.
"""

import json
import re
import logging
from dataclasses import dataclass
from typing import Any, List, Optional

logger = logging.getLogger(__name__)

FENCE_PATTERN = re.compile(r"^\s*```[\w-]*[ \t]*\n?(.*?)\n?[ \t]*```\s*$", re.DOTALL)
OPEN_FENCE_PATTERN = re.compile(r"^\s*```[\w-]*[ \t]*\n?")

# Cut points tried by repair_truncated_json, least aggressive first
_TRAILING_STRING = re.compile(r',?\s*"[^"]*\Z')
_TRAILING_PAIR = re.compile(r',?\s*"[^"]*"\s*:\s*"?[^"{}\[\]]*\Z')
_TRAILING_TAIL = re.compile(r"[^}\]]*\Z")


def strip_fences(text: str) -> str:
    """
    Remove a fenced-code wrapper (```json ... ```) and surrounding whitespace.

    A lone opening marker is also removed, since a response truncated by
    the output cap loses its closing marker.

    Args:
        text: Raw LLM output

    Returns:
        The payload inside the fence, or the input unchanged if unfenced
    """
    if not text:
        return text

    match = FENCE_PATTERN.match(text)
    if match:
        return match.group(1).strip()

    if text.lstrip().startswith("```"):
        return OPEN_FENCE_PATTERN.sub("", text, count=1).strip()

    return text


def _is_valid_json(candidate: str) -> bool:
    try:
        json.loads(candidate)
    except ValueError:
        return False
    return True


def extract_json_object(text: str) -> Optional[str]:
    """
    Find the longest balanced {...} span in text that parses as JSON.

    Every opening brace is tried as a start point. Its matching closing brace
    is found with a depth counter that ignores braces inside strings
    (tracking in-string and backslash-escape state). A span that fails to
    parse only abandons that opening brace.

    Args:
        text: Text that may contain a JSON object surrounded by commentary

    Returns:
        JSON text of the longest parseable object, or None
    """
    if not text:
        return None

    best: Optional[str] = None

    for start, char in enumerate(text):
        if char != "{":
            continue

        depth = 0
        in_string = False
        escape = False

        for end in range(start, len(text)):
            ch = text[end]
            if escape:
                escape = False
                continue
            if ch == "\\" and in_string:
                escape = True
                continue
            if ch == '"':
                in_string = not in_string
                continue
            if in_string:
                continue
            if ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    candidate = text[start:end + 1]
                    if _is_valid_json(candidate) and (best is None or len(candidate) > len(best)):
                        best = candidate
                    break

    return best


def _closers_for(candidate: str) -> Optional[List[str]]:
    """Closing characters needed to balance candidate, or None if it ends inside a string."""
    stack: List[str] = []
    in_string = False
    escape = False

    for ch in candidate:
        if escape:
            escape = False
            continue
        if ch == "\\" and in_string:
            escape = True
            continue
        if ch == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if ch == "{":
            stack.append("}")
        elif ch == "[":
            stack.append("]")
        elif ch in "}]" and stack:
            stack.pop()

    if in_string:
        return None
    return stack


def repair_truncated_json(text: str) -> Optional[str]:
    """
    Repair JSON that was cut off mid-output by closing open structures.

    Candidates, in order of increasing aggressiveness:
    1. the text as-is
    2. trailing incomplete quoted string removed
    3. trailing incomplete key/partial value removed
    4. truncated back to the last closing brace or bracket

    Args:
        text: Truncated JSON text

    Returns:
        Repaired JSON text that parses, or None
    """
    if not text:
        return None

    candidates = [
        text,
        _TRAILING_STRING.sub("", text, count=1),
        _TRAILING_PAIR.sub("", text, count=1),
        _TRAILING_TAIL.sub("", text, count=1),
    ]

    for candidate in candidates:
        if len(candidate) < 2:
            continue

        closers = _closers_for(candidate)
        if closers is None:
            continue

        repaired = candidate + "".join(reversed(closers))
        if _is_valid_json(repaired):
            return repaired

    return None


@dataclass
class ExtractionResult:
    """Outcome of parse_json_response()"""
    value: Any
    method: str
    warning: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.warning is None


def parse_json_response(text: Optional[str], truncated: bool = False, default: Any = None) -> ExtractionResult:
    """
    Parse LLM output as JSON using the full fallback chain.

    Never raises: when nothing can be extracted, the default value is
    returned with a warning attached.

    Args:
        text: Raw LLM output
        truncated: True when the response stopped at the output-length limit
        default: Value returned when extraction fails

    Returns:
        ExtractionResult with the parsed value and the method that produced it
    """
    if not text or not text.strip():
        return ExtractionResult(value=default, method="default", warning="Empty response")

    cleaned = strip_fences(text)

    try:
        return ExtractionResult(value=json.loads(cleaned), method="direct")
    except ValueError:
        pass

    if truncated:
        repaired = repair_truncated_json(cleaned)
        if repaired is not None:
            logger.warning("Recovered truncated JSON response")
            return ExtractionResult(value=json.loads(repaired), method="repaired")

    extracted = extract_json_object(cleaned)
    if extracted is not None:
        return ExtractionResult(value=json.loads(extracted), method="extracted")

    logger.warning(f"Could not extract JSON from response ({len(text)} chars), using default")
    return ExtractionResult(
        value=default,
        method="default",
        warning=f"Failed to extract JSON from response: {text[:200]}",
    )
