"""Tests for RailwayClient: request dispatch, outcome classification, helpers."""

from __future__ import annotations

import json
from typing import Any

import httpx
import pytest

from preview_envs.providers.railway_client import (
    RailwayAPIError,
    RailwayClient,
    RailwayGatewayTimeoutError,
    RailwayGraphQLError,
    RailwayTimeoutError,
)

ENDPOINT = "https://railway.test/graphql/v2"


def _client(handler, **kwargs) -> tuple[RailwayClient, httpx.AsyncClient]:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    client = RailwayClient(token="rw-secret", endpoint=ENDPOINT, http_client=http_client, **kwargs)
    return client, http_client


def _environment_node(
    env_id: str = "env_1",
    name: str = "pr-42",
    *,
    instances: list[dict[str, Any]] | None = None,
    triggers: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    return {
        "id": env_id,
        "name": name,
        "serviceInstances": {"edges": [{"node": n} for n in instances or []]},
        "deploymentTriggers": {"edges": [{"node": n} for n in triggers or []]},
    }


# ── Construction ─────────────────────────────────────────────────


def test_requires_token():
    with pytest.raises(ValueError, match="token"):
        RailwayClient(token="")


def test_repr_does_not_leak_token():
    client = RailwayClient(token="rw-secret")
    assert "rw-secret" not in repr(client)


# ── Request dispatch ─────────────────────────────────────────────


@pytest.mark.asyncio
async def test_request_posts_document_with_bearer_token():
    seen: dict[str, Any] = {}

    async def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"data": {"ok": True}})

    client, http_client = _client(handler)
    async with http_client:
        data = await client.request("query { ok }", {"a": 1})

    assert data == {"ok": True}
    assert seen["method"] == "POST"
    assert seen["url"] == ENDPOINT
    assert seen["auth"] == "Bearer rw-secret"
    assert seen["body"] == {"query": "query { ok }", "variables": {"a": 1}}


@pytest.mark.asyncio
async def test_request_performs_exactly_one_call_on_failure():
    calls = 0

    async def handler(_: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(503, text="unavailable")

    client, http_client = _client(handler)
    async with http_client:
        with pytest.raises(RailwayAPIError) as exc:
            await client.request("query { ok }")

    assert calls == 1
    assert exc.value.status_code == 503
    assert exc.value.is_gateway_timeout is False


@pytest.mark.asyncio
async def test_504_is_gateway_timeout():
    async def handler(_: httpx.Request) -> httpx.Response:
        return httpx.Response(504, text="Gateway Timeout")

    client, http_client = _client(handler)
    async with http_client:
        with pytest.raises(RailwayGatewayTimeoutError) as exc:
            await client.request("mutation { x }", operation="environmentCreate")

    assert exc.value.is_gateway_timeout is True
    assert exc.value.status_code == 504
    assert exc.value.operation == "environmentCreate"


@pytest.mark.asyncio
async def test_client_timeout_is_gateway_timeout_class():
    async def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    client, http_client = _client(handler)
    async with http_client:
        with pytest.raises(RailwayTimeoutError) as exc:
            await client.request("query { ok }")

    assert exc.value.is_gateway_timeout is True


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error",
    [httpx.ConnectError, httpx.ReadError, httpx.RemoteProtocolError],
)
async def test_transport_errors_are_classified(error):
    async def handler(request: httpx.Request) -> httpx.Response:
        raise error("connection refused", request=request)

    client, http_client = _client(handler)
    async with http_client:
        with pytest.raises(RailwayAPIError) as exc:
            await client.list_environments("proj_1")

    assert exc.value.status_code == 0
    assert exc.value.is_gateway_timeout is False
    assert exc.value.operation == "environments"
    assert isinstance(exc.value.__cause__, error)


@pytest.mark.asyncio
async def test_graphql_errors_raise_even_with_http_200():
    async def handler(_: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={"data": None, "errors": [{"message": "Not Authorized"}, {"message": "again"}]},
        )

    client, http_client = _client(handler)
    async with http_client:
        with pytest.raises(RailwayGraphQLError) as exc:
            await client.request("query { ok }")

    assert exc.value.message == "Not Authorized; again"
    assert len(exc.value.errors) == 2


@pytest.mark.asyncio
async def test_error_message_does_not_leak_token():
    async def handler(_: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"errors": [{"message": "bad token"}]})

    client, http_client = _client(handler)
    async with http_client:
        with pytest.raises(RailwayAPIError) as exc:
            await client.request("query { ok }")

    assert exc.value.message == "bad token"
    assert "rw-secret" not in str(exc.value)


@pytest.mark.asyncio
async def test_missing_data_is_an_error():
    async def handler(_: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"unexpected": 1})

    client, http_client = _client(handler)
    async with http_client:
        with pytest.raises(RailwayAPIError, match="no data"):
            await client.request("query { ok }")


@pytest.mark.asyncio
async def test_without_injected_client_opens_fresh_connection(monkeypatch):
    opened: list[httpx.AsyncClient] = []
    real_async_client = httpx.AsyncClient

    def factory(*args, **kwargs):
        kwargs["transport"] = httpx.MockTransport(
            lambda request: httpx.Response(200, json={"data": {"n": len(opened)}}),
        )
        client = real_async_client(*args, **kwargs)
        opened.append(client)
        return client

    monkeypatch.setattr(httpx, "AsyncClient", factory)
    client = RailwayClient(token="rw-secret", endpoint=ENDPOINT)

    await client.request("query { a }")
    await client.request("query { b }")

    assert len(opened) == 2
    assert all(c.is_closed for c in opened)


# ── Helpers ──────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_list_environments_flattens_edges():
    async def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        assert body["variables"] == {"projectId": "proj_1"}
        return httpx.Response(200, json={"data": {"environments": {"edges": [
            {"node": {"id": "env_a", "name": "production"}},
            {"node": {"id": "env_b", "name": "staging"}},
        ]}}})

    client, http_client = _client(handler)
    async with http_client:
        envs = await client.list_environments("proj_1")

    assert [(e.id, e.name) for e in envs] == [("env_a", "production"), ("env_b", "staging")]


@pytest.mark.asyncio
async def test_create_environment_parses_instances_and_triggers():
    seen: dict[str, Any] = {}

    async def handler(request: httpx.Request) -> httpx.Response:
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"data": {"environmentCreate": _environment_node(
            instances=[{
                "id": "si_1",
                "serviceId": "svc_web",
                "domains": {"serviceDomains": [{"domain": "web-pr-42.up.railway.app"}]},
            }],
            triggers=[{"id": "trg_1", "branch": "main", "serviceId": "svc_web"}],
        )}})

    client, http_client = _client(handler)
    async with http_client:
        env = await client.create_environment(
            "pr-42", project_id="proj_1", source_environment_id="env_src",
        )

    assert seen["body"]["variables"]["input"] == {
        "name": "pr-42",
        "projectId": "proj_1",
        "sourceEnvironmentId": "env_src",
    }
    assert env is not None
    assert env.is_ready
    assert env.service_instances[0].service_id == "svc_web"
    assert env.service_instances[0].domains == ("web-pr-42.up.railway.app",)
    assert env.deployment_triggers[0].branch == "main"


@pytest.mark.asyncio
async def test_create_environment_without_resources_is_not_ready():
    async def handler(_: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"data": {"environmentCreate": _environment_node()}})

    client, http_client = _client(handler)
    async with http_client:
        env = await client.create_environment(
            "pr-42", project_id="proj_1", source_environment_id="env_src",
        )

    assert env is not None
    assert env.is_ready is False


@pytest.mark.asyncio
async def test_get_environment_returns_none_when_absent():
    async def handler(_: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"data": {"environment": None}})

    client, http_client = _client(handler)
    async with http_client:
        assert await client.get_environment("env_missing") is None


@pytest.mark.asyncio
async def test_upsert_variables_sends_collection():
    seen: dict[str, Any] = {}

    async def handler(request: httpx.Request) -> httpx.Response:
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"data": {"variableCollectionUpsert": True}})

    client, http_client = _client(handler)
    async with http_client:
        ok = await client.upsert_variables(
            project_id="proj_1",
            environment_id="env_1",
            service_id="svc_web",
            variables={"DEBUG": "1"},
        )

    assert ok is True
    assert seen["body"]["variables"]["input"] == {
        "projectId": "proj_1",
        "environmentId": "env_1",
        "serviceId": "svc_web",
        "variables": {"DEBUG": "1"},
    }


@pytest.mark.asyncio
async def test_update_deployment_trigger_sets_branch():
    seen: dict[str, Any] = {}

    async def handler(request: httpx.Request) -> httpx.Response:
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"data": {"deploymentTriggerUpdate": {"id": "trg_1"}}})

    client, http_client = _client(handler)
    async with http_client:
        trigger_id = await client.update_deployment_trigger("trg_1", branch="feature/login")

    assert trigger_id == "trg_1"
    assert seen["body"]["variables"] == {"id": "trg_1", "input": {"branch": "feature/login"}}


@pytest.mark.asyncio
async def test_deploy_service_returns_deployment_id():
    async def handler(_: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"data": {"serviceInstanceDeployV2": "dep_123"}})

    client, http_client = _client(handler)
    async with http_client:
        assert await client.deploy_service(environment_id="env_1", service_id="svc_web") == "dep_123"


@pytest.mark.asyncio
async def test_deploy_service_without_id_raises():
    async def handler(_: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"data": {"serviceInstanceDeployV2": None}})

    client, http_client = _client(handler)
    async with http_client:
        with pytest.raises(RailwayAPIError, match="no deployment id"):
            await client.deploy_service(environment_id="env_1", service_id="svc_web")


@pytest.mark.asyncio
async def test_get_service_name_and_delete():
    async def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        if "environmentDelete" in body["query"]:
            return httpx.Response(200, json={"data": {"environmentDelete": True}})
        return httpx.Response(200, json={"data": {"service": {"id": "svc_web", "name": "web"}}})

    client, http_client = _client(handler)
    async with http_client:
        assert await client.get_service_name("svc_web") == "web"
        assert await client.delete_environment("env_1") is True
