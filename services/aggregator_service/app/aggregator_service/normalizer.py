import json
import re
from typing import Any, List, Optional

from aggregator_service.domain import GeneratedItem


class MalformedOutputError(ValueError):
    pass


_OPEN_FENCE = re.compile(r"^```[A-Za-z]*\s*")
_CLOSE_FENCE = re.compile(r"\s*```$")


def norm_text(s: Any) -> str:
    if s is None:
        return ""
    s = str(s).strip()
    s = re.sub(r"\s+", " ", s)
    return s


def strip_code_fences(text: str) -> str:
    s = (text or "").strip()
    s = _OPEN_FENCE.sub("", s)
    s = _CLOSE_FENCE.sub("", s)
    s = s.strip()
    # prose around the payload: keep the outermost array
    if not s.startswith(("[", "{")):
        start, end = s.find("["), s.rfind("]")
        if start != -1 and end > start:
            s = s[start:end + 1]
    return s


def to_item(raw: Any) -> Optional[GeneratedItem]:
    if not isinstance(raw, dict):
        return None
    headline = norm_text(raw.get("headline"))
    if not headline:
        return None
    url = norm_text(raw.get("url"))
    if not url.lower().startswith(("http://", "https://")):
        url = ""
    return GeneratedItem(
        headline=headline,
        detail=norm_text(raw.get("detail")),
        source=norm_text(raw.get("source")),
        url=url,
    )


def parse_items(text: str) -> List[GeneratedItem]:
    """Parse a model response into news items.

    Raises MalformedOutputError for non-JSON payloads, payloads that are not
    an array, and non-empty arrays where no entry has a headline.
    """
    body = strip_code_fences(text)
    try:
        data = json.loads(body)
    except ValueError as e:
        raise MalformedOutputError(f"response is not valid JSON: {e}") from e

    if isinstance(data, dict):
        data = data.get("articles", data.get("items"))
    if not isinstance(data, list):
        raise MalformedOutputError("expected a JSON array of news items")

    items = [item for item in (to_item(raw) for raw in data) if item is not None]
    if data and not items:
        raise MalformedOutputError("no entry in the array has a headline")
    return items
