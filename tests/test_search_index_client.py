"""Tests for the Meilisearch REST client against a stubbed transport."""

import json

import httpx
import pytest

from index_sync.models.config import MeiliSearchConfig
from index_sync.storage.search_index import (
    IndexTaskTimeoutError,
    SearchIndexClient,
    SearchIndexError,
    TaskStatus,
)
from index_sync.sync.documents import DRIP_LISTS_SETTINGS

HOST = "http://meili.test"


def client_for(handler) -> SearchIndexClient:
    return SearchIndexClient(HOST, "secret", transport=httpx.MockTransport(handler))


def enqueued(uid: int, index_uid: str = "drip_lists") -> httpx.Response:
    return httpx.Response(
        202,
        json={"taskUid": uid, "indexUid": index_uid, "status": "enqueued", "type": "x"},
    )


async def test_update_documents_sends_upsert_with_primary_key() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return enqueued(12)

    client = client_for(handler)
    task = await client.update_documents("drip_lists", [{"id": "mainnet-1", "name": "a"}])
    await client.aclose()

    assert task.task_uid == 12
    assert task.status is TaskStatus.ENQUEUED
    request = requests[0]
    assert request.method == "PUT"
    assert request.url.path == "/indexes/drip_lists/documents"
    assert request.url.params["primaryKey"] == "id"
    assert request.headers["Authorization"] == "Bearer secret"
    assert json.loads(request.content) == [{"id": "mainnet-1", "name": "a"}]


async def test_update_settings_sends_camel_case_payload() -> None:
    bodies: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "PATCH"
        assert request.url.path == "/indexes/drip_lists/settings"
        bodies.append(json.loads(request.content))
        return enqueued(1)

    client = client_for(handler)
    await client.update_settings("drip_lists", DRIP_LISTS_SETTINGS)
    await client.aclose()

    body = bodies[0]
    assert body["distinctAttribute"] == "id"
    assert "isVisible" in body["filterableAttributes"]
    assert body["typoTolerance"] == {
        "disableOnAttributes": ["entityId", "ownerAccountId", "ownerAddress"]
    }


async def test_wait_for_task_polls_until_terminal() -> None:
    statuses = iter(["enqueued", "processing", "succeeded"])

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/tasks/7"
        return httpx.Response(
            200, json={"uid": 7, "indexUid": "projects", "status": next(statuses)}
        )

    client = client_for(handler)
    task = await client.wait_for_task(7, timeout=5, interval=0.001)
    await client.aclose()

    assert task.status is TaskStatus.SUCCEEDED
    assert task.index_uid == "projects"


async def test_wait_for_task_returns_failed_task() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={
                "uid": 3,
                "status": "failed",
                "error": {"code": "invalid_document_id", "message": "bad id"},
            },
        )

    client = client_for(handler)
    task = await client.wait_for_task(3, timeout=5, interval=0.001)
    await client.aclose()

    assert task.status is TaskStatus.FAILED
    assert task.error is not None and task.error["code"] == "invalid_document_id"


async def test_wait_for_task_times_out() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"uid": 4, "status": "processing"})

    client = client_for(handler)
    with pytest.raises(IndexTaskTimeoutError) as exc_info:
        await client.wait_for_task(4, timeout=0.05, interval=0.01)
    await client.aclose()

    assert exc_info.value.task_uid == 4


async def test_error_status_raises_search_index_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            403, json={"code": "invalid_api_key", "message": "The provided API key is invalid."}
        )

    client = client_for(handler)
    with pytest.raises(SearchIndexError, match="invalid"):
        await client.update_documents("projects", [{"id": "x"}])
    await client.aclose()


async def test_transport_error_is_retried() -> None:
    attempts = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal attempts
        attempts += 1
        if attempts == 1:
            raise httpx.ConnectError("connection refused", request=request)
        return enqueued(2)

    client = client_for(handler)
    task = await client.update_documents("drip_lists", [{"id": "mainnet-1"}])
    await client.aclose()

    assert task.task_uid == 2
    assert attempts == 2


async def test_health_reports_availability() -> None:
    payloads = iter([{"status": "available"}, {"status": "degraded"}])

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/health"
        return httpx.Response(200, json=next(payloads))

    client = client_for(handler)
    assert await client.health() is True
    assert await client.health() is False
    await client.aclose()


def test_from_config_strips_trailing_slash() -> None:
    config = MeiliSearchConfig(host="http://localhost:7700/", api_key="key")
    client = SearchIndexClient.from_config(config)

    assert str(client._client.base_url).rstrip("/") == "http://localhost:7700"
