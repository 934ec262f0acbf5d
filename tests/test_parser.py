from __future__ import annotations

from types import SimpleNamespace

import pytest

from conftest import POST_URL, make_memo

from pod_publisher.errors import InvalidRequestError
from pod_publisher.models import JobPhase, JobRequest
from pod_publisher.parser import (
    buyer_id,
    extract_tweet_id,
    normalize_categories,
    parse_job_content,
    validate_request,
)


@pytest.mark.parametrize(
    "url",
    [
        "https://x.com/reppo/status/1234567890",
        "https://twitter.com/reppo/status/1234567890",
        "http://www.twitter.com/reppo/statuses/1234567890",
        "https://mobile.x.com/reppo/status/1234567890?s=20",
    ],
)
def test_accepts_post_url_forms(url):
    assert extract_tweet_id(url) == "1234567890"


@pytest.mark.parametrize(
    "url",
    ["", None, "https://example.com/reppo/status/1", "https://x.com/reppo", "x.com/reppo/status/abc"],
)
def test_rejects_other_urls(url):
    with pytest.raises(InvalidRequestError):
        extract_tweet_id(url)


def test_extract_tweet_id_names_the_bad_url():
    with pytest.raises(InvalidRequestError) as excinfo:
        extract_tweet_id("https://example.com/nope")
    assert excinfo.value.reason == "Invalid X/Twitter URL: https://example.com/nope"


def test_normalize_categories_handles_lists_and_csv():
    assert normalize_categories(" crypto, defi ,crypto,") == ["crypto", "defi"]
    assert normalize_categories(["ai", " ", None, "ai", 7]) == ["ai", "7"]
    assert normalize_categories("single") == ["single"]
    assert normalize_categories(None) == []


def test_parse_reads_requirement_layer():
    request = parse_job_content([make_memo(agentName="scout", podName="Title")])

    assert request.post_url == POST_URL
    assert request.categories == ["crypto", "defi"]
    assert request.agent_name == "scout"
    assert request.pod_name == "Title"
    assert request.pod_description is None


def test_parse_accepts_dict_content_and_top_level_fields():
    memo = {"content": {"postUrl": POST_URL, "subnet": "ai"}}

    request = parse_job_content([memo])

    assert request.post_url == POST_URL
    assert request.categories == ["ai"]


def test_parse_first_non_empty_value_wins_across_memos():
    memos = [
        {"content": "not json"},
        {"content": '{"requirement": {"postUrl": "  ", "categories": []}}'},
        make_memo(subnets="crypto,defi"),
        make_memo(post_url="https://x.com/other/status/99", subnets=["ignored"]),
    ]

    request = parse_job_content(memos)

    assert request.post_url == POST_URL
    assert request.categories == ["crypto", "defi"]


def test_parse_reads_object_memos():
    memo = SimpleNamespace(content=b'{"requirement": {"postUrl": "https://x.com/a/status/5", "category": "news"}}')

    request = parse_job_content([memo])

    assert request.post_url == "https://x.com/a/status/5"
    assert request.categories == ["news"]


def test_parse_handles_no_memos():
    assert parse_job_content(None) == JobRequest()
    assert parse_job_content([]) == JobRequest()


def test_validate_request_reports_first_missing_field():
    with pytest.raises(InvalidRequestError, match="Missing postUrl in job payload"):
        validate_request(JobRequest(categories=["crypto"]))
    with pytest.raises(InvalidRequestError, match="Missing subnet in job payload"):
        validate_request(JobRequest(post_url=POST_URL))
    assert validate_request(JobRequest(post_url=POST_URL, categories=["crypto"])) == "1234567890"


def test_buyer_id_falls_back_through_job_shapes():
    assert buyer_id(SimpleNamespace(client_address="0xa")) == "0xa"
    assert buyer_id(SimpleNamespace(client_address=None, buyer_address="0xb")) == "0xb"
    assert buyer_id(SimpleNamespace(client={"address": "0xc"})) == "0xc"
    assert buyer_id(SimpleNamespace(buyer=SimpleNamespace(address="0xd"))) == "0xd"
    assert buyer_id(SimpleNamespace()) is None


@pytest.mark.parametrize(
    ("value", "expected"),
    [(2, 2), ("3", 3), ("transaction", 2), ("EXPIRED", 6), ("bogus", -1), (None, -1), (True, -1)],
)
def test_phase_coercion(value, expected):
    assert JobPhase.coerce(value) == expected
