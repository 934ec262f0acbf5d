from __future__ import annotations

import re
from typing import Any, Iterable, List, Optional, Sequence

import orjson

from .errors import InvalidRequestError
from .models import JobRequest

TWITTER_URL_REGEX = re.compile(
    r"^https?://(?:www\.|mobile\.)?(?:x|twitter)\.com/[A-Za-z0-9_]{1,15}/status(?:es)?/(\d+)(?:[/?#].*)?$"
)

_SCALAR_FIELDS = (
    ("postUrl", "post_url"),
    ("agentName", "agent_name"),
    ("agentDescription", "agent_description"),
    ("podName", "pod_name"),
    ("podDescription", "pod_description"),
)
_CATEGORY_KEYS = ("subnets", "subnet", "categories", "category")


def normalize_categories(value: Any) -> List[str]:
    """Accept a list or a comma-separated string; return trimmed, ordered, unique names."""
    if value is None:
        return []
    if isinstance(value, str):
        items: Iterable[Any] = value.split(",")
    elif isinstance(value, (list, tuple)):
        items = value
    else:
        items = [value]
    result: List[str] = []
    for item in items:
        if item is None or isinstance(item, (dict, list, tuple)):
            continue
        name = str(item).strip()
        if name and name not in result:
            result.append(name)
    return result


def _decode_memo(memo: Any) -> Optional[dict]:
    content = memo.get("content") if isinstance(memo, dict) else getattr(memo, "content", memo)
    if isinstance(content, (bytes, str)):
        try:
            content = orjson.loads(content)
        except orjson.JSONDecodeError:
            return None
    return content if isinstance(content, dict) else None


def _non_empty(value: Any) -> Optional[str]:
    if isinstance(value, str):
        value = value.strip()
        return value or None
    if value is None or isinstance(value, (dict, list, tuple, bool)):
        return None
    return str(value)


def parse_job_content(memos: Sequence[Any] | None) -> JobRequest:
    """Scan every memo for request fields. First non-empty value wins per field."""
    result = JobRequest()
    for memo in memos or []:
        content = _decode_memo(memo)
        if content is None:
            continue
        requirement = content.get("requirement")
        layers = [requirement, content] if isinstance(requirement, dict) else [content]
        for layer in layers:
            for key, attr in _SCALAR_FIELDS:
                if getattr(result, attr) is None:
                    setattr(result, attr, _non_empty(layer.get(key)))
            if not result.categories:
                for key in _CATEGORY_KEYS:
                    categories = normalize_categories(layer.get(key))
                    if categories:
                        result.categories = categories
                        break
    return result


def extract_tweet_id(url: str) -> str:
    match = TWITTER_URL_REGEX.match(url.strip()) if url else None
    if not match:
        raise InvalidRequestError(f"Invalid X/Twitter URL: {url}")
    return match.group(1)


def validate_request(request: JobRequest) -> str:
    """Return the tweet id for a complete request, raise InvalidRequestError otherwise."""
    if not request.post_url:
        raise InvalidRequestError("Missing postUrl in job payload")
    if not request.categories:
        raise InvalidRequestError("Missing subnet in job payload")
    return extract_tweet_id(request.post_url)


def buyer_id(job: Any) -> Optional[str]:
    for attr in ("client_address", "buyer_address"):
        value = getattr(job, attr, None)
        if value:
            return str(value)
    for attr in ("client", "buyer"):
        party = getattr(job, attr, None)
        address = party.get("address") if isinstance(party, dict) else getattr(party, "address", None)
        if address:
            return str(address)
    return None
