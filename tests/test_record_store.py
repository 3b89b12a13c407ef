"""Tests for the record store HTTP client."""

import json

import httpx
import pytest

from ragchat import RecordStore
from ragchat.exceptions import UpstreamUnavailableError
from ragchat.record_store import where_equals

BASE_URL = "https://nocodb.example.test/api/v1/db/data/v1/chat"


def make_store(handler) -> RecordStore:
    client = httpx.Client(base_url=BASE_URL, transport=httpx.MockTransport(handler))
    return RecordStore(http_client=client)


def test_default_client_targets_base_and_sends_token():
    store = RecordStore(
        base_url="https://nocodb.example.test/", token="secret-token", base_name="chat"
    )

    assert str(store.http_client.base_url) == f"{BASE_URL}/"
    assert store.http_client.headers["xc-token"] == "secret-token"
    store.close()


def test_where_equals():
    assert where_equals("user_id", 42) == "(user_id,eq,42)"


def test_list_records_sends_query_and_unwraps_list():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["params"] = dict(request.url.params)
        return httpx.Response(200, json={"list": [{"Id": 1}, {"Id": 2}], "pageInfo": {}})

    rows = make_store(handler).list_records(
        "conversations", where="(user_id,eq,7)", sort="-CreatedAt", limit=50
    )

    assert rows == [{"Id": 1}, {"Id": 2}]
    assert seen["path"] == "/api/v1/db/data/v1/chat/conversations"
    assert seen["params"] == {"where": "(user_id,eq,7)", "sort": "-CreatedAt", "limit": "50"}


def test_list_records_without_list_key():
    store = make_store(lambda request: httpx.Response(200, json={}))  # noqa: ARG005

    assert store.list_records("messages") == []


def test_create_update_and_delete():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else None
        calls.append((request.method, request.url.path.rsplit("/chat", 1)[1], body))
        if request.method == "DELETE":
            return httpx.Response(200)
        return httpx.Response(200, json={"Id": 5, **(body or {})})

    store = make_store(handler)

    created = store.create_record("conversations", {"title": "Trip"})
    updated = store.update_record("conversations", 5, {"title": "Paris trip"})
    store.delete_record("conversations", 5)

    assert created == {"Id": 5, "title": "Trip"}
    assert updated == {"Id": 5, "title": "Paris trip"}
    assert calls == [
        ("POST", "/conversations", {"title": "Trip"}),
        ("PATCH", "/conversations/5", {"title": "Paris trip"}),
        ("DELETE", "/conversations/5", None),
    ]


@pytest.mark.parametrize(
    ("response", "match"),
    [
        (httpx.Response(404, json={"msg": "not found"}), "HTTP 404"),
        (httpx.Response(200, text="<html>"), "invalid JSON"),
    ],
)
def test_store_failures_are_upstream_unavailable(response, match):
    store = make_store(lambda request: response)  # noqa: ARG005

    with pytest.raises(UpstreamUnavailableError, match=match):
        store.get_record("conversations", 1)


def test_store_unreachable():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out", request=request)

    with pytest.raises(UpstreamUnavailableError, match="Record store unavailable"):
        make_store(handler).list_records("conversations")
