import re
import json
import logging
from typing import Any, Dict, List, Optional
from .errors import DraftParseError
from .models import DraftPage, ParsedDraft

logger = logging.getLogger(__name__)

MIN_PAGES = 3

_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```")


def _load_json(raw: str) -> Dict[str, Any]:
    cleaned = (raw or "").strip()
    match = _FENCE_RE.search(cleaned)
    if match:
        cleaned = match.group(1).strip()
    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise DraftParseError(f"Failed to parse JSON: {e}") from e
    if not isinstance(parsed, dict):
        raise DraftParseError("Expected a JSON object")
    return parsed


def _page_number(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return None


def parse_draft_output(raw: str) -> ParsedDraft:
    """
    Parse the model's draft JSON into a title and numbered pages.

    Pages without a number, text or image prompt, and pages out of sequence,
    are dropped with a warning. Fewer than 3 usable pages is an error.
    """
    parsed = _load_json(raw)

    title = parsed.get("title")
    if not isinstance(title, str) or not title.strip():
        raise DraftParseError("Missing or invalid 'title' field in JSON")
    pages = parsed.get("pages")
    if not isinstance(pages, list):
        raise DraftParseError("Missing or invalid 'pages' array in JSON")
    if len(pages) < MIN_PAGES:
        raise DraftParseError(f"Insufficient pages: got {len(pages)}, minimum {MIN_PAGES} required")

    valid: List[DraftPage] = []
    expected = 1
    for page in pages:
        if not isinstance(page, dict):
            logger.warning(f"Skipping malformed page: {page!r}")
            expected += 1
            continue
        number = _page_number(page.get("pageNumber"))
        text = page.get("text")
        image_prompt = page.get("imagePrompt")

        if not number or not text:
            logger.warning("Skipping malformed page: missing or invalid pageNumber or text")
            expected = number + 1 if number else expected + 1
            continue
        if not isinstance(image_prompt, str) or not image_prompt.strip():
            logger.warning(f"Skipping page {number}: missing or empty imagePrompt")
            expected = number + 1
            continue
        if number != expected:
            logger.warning(f"Skipping page with non-sequential number: expected {expected}, got {number}")
            expected = number + 1
            continue

        valid.append(DraftPage(
            page_number=number,
            text=str(text),
            image_prompt=image_prompt.strip(),
            emotional_tone=str(page["emotionalTone"]) if page.get("emotionalTone") else None,
        ))
        expected += 1

    if len(valid) < MIN_PAGES:
        raise DraftParseError(f"Insufficient valid pages after parsing: got {len(valid)}, minimum {MIN_PAGES} required")
    return ParsedDraft(title=title.strip(), pages=valid)


def parse_suggestion_output(raw: str) -> Dict[str, Optional[str]]:
    parsed = _load_json(raw)
    suggested = parsed.get("suggestedText")
    if not isinstance(suggested, str) or not suggested.strip():
        raise DraftParseError("Missing or empty 'suggestedText' in suggestion JSON")
    rationale = parsed.get("rationale")
    return {
        "suggested_text": suggested.strip(),
        "rationale": rationale.strip() if isinstance(rationale, str) and rationale.strip() else None,
    }
