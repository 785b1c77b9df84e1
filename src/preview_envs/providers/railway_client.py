"""Async GraphQL client for the Railway public API.

Performs exactly one request per call and classifies the outcome through
the exception hierarchy below. It never retries: retry policy belongs to
callers (the readiness poller and the rollout orchestrator), which decide
whether a gateway timeout on ``environmentCreate`` is recoverable.

Auth uses the static bearer token supplied at process start. When no
``http_client`` is injected, each call opens and closes its own
``httpx.AsyncClient`` so every request carries a fresh authenticated
connection.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping

import httpx

from ..models import (
    Environment,
    EnvironmentSummary,
    parse_environment,
    parse_environment_summaries,
)
from . import queries

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "https://backboard.railway.app/graphql/v2"

CREATE_ENVIRONMENT_OPERATION = "environmentCreate"


# ── Exception hierarchy ─────────────────────────────────────────


class RailwayAPIError(Exception):
    """Base exception for Railway API errors."""

    is_gateway_timeout = False

    def __init__(
        self,
        status_code: int,
        message: str = "",
        *,
        response_body: str = "",
        operation: str | None = None,
    ) -> None:
        self.status_code = status_code
        self.message = message
        self.response_body = response_body
        self.operation = operation
        super().__init__(f"Railway API error {status_code}: {message}")


class RailwayGatewayTimeoutError(RailwayAPIError):
    """Railway's gateway returned 504 while the request may still be running."""

    is_gateway_timeout = True

    def __init__(self, message: str = "Gateway Timeout", **kwargs: Any) -> None:
        super().__init__(504, message, **kwargs)


class RailwayTimeoutError(RailwayAPIError):
    """The request timed out client-side before any response arrived."""

    is_gateway_timeout = True

    def __init__(self, message: str = "Request timed out", **kwargs: Any) -> None:
        super().__init__(0, message, **kwargs)


class RailwayGraphQLError(RailwayAPIError):
    """HTTP succeeded but the GraphQL response carried ``errors``."""

    def __init__(
        self,
        errors: list[Any],
        *,
        operation: str | None = None,
    ) -> None:
        self.errors = errors
        messages = [
            e.get("message", str(e)) if isinstance(e, Mapping) else str(e)
            for e in errors
        ]
        super().__init__(200, "; ".join(messages), operation=operation)


# ── Client ───────────────────────────────────────────────────────


class RailwayClient:
    """Request dispatcher for Railway queries and mutations."""

    def __init__(
        self,
        *,
        token: str,
        endpoint: str = DEFAULT_ENDPOINT,
        http_client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 30.0,
    ) -> None:
        if not token:
            raise ValueError("token is required")

        self._token = token
        self._endpoint = endpoint
        self._client = http_client
        self._timeout = float(timeout_seconds)

    def __repr__(self) -> str:
        return f"RailwayClient(endpoint={self._endpoint!r})"

    def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._token}"}

    async def _post(self, body: dict[str, Any]) -> httpx.Response:
        if self._client is not None:
            return await self._client.post(
                self._endpoint,
                json=body,
                headers=self._auth_headers(),
                timeout=self._timeout,
            )
        async with httpx.AsyncClient() as client:
            return await client.post(
                self._endpoint,
                json=body,
                headers=self._auth_headers(),
                timeout=self._timeout,
            )

    def _raise_for_status(self, resp: httpx.Response, operation: str | None) -> None:
        if resp.status_code < 400:
            return

        body = resp.text
        message = body[:200] if body else f"HTTP {resp.status_code}"

        try:
            payload = resp.json()
            if isinstance(payload, dict):
                errors = payload.get("errors")
                if isinstance(errors, list) and errors:
                    first = errors[0]
                    if isinstance(first, dict) and first.get("message"):
                        message = first["message"]
                else:
                    message = payload.get("error", payload.get("message", message))
        except ValueError:
            pass

        if resp.status_code == 504:
            raise RailwayGatewayTimeoutError(
                message=message, response_body=body, operation=operation,
            )

        raise RailwayAPIError(
            status_code=resp.status_code,
            message=message,
            response_body=body,
            operation=operation,
        )

    async def request(
        self,
        document: str,
        variables: Mapping[str, Any] | None = None,
        *,
        operation: str | None = None,
    ) -> dict[str, Any]:
        """Send one GraphQL document and return its ``data`` object."""
        try:
            resp = await self._post(
                {"query": document, "variables": dict(variables or {})},
            )
        except httpx.TimeoutException as e:
            logger.warning(
                "Railway request timed out: operation=%s",
                operation,
                extra={"operation": operation},
            )
            raise RailwayTimeoutError(str(e) or "Request timed out", operation=operation) from e
        except httpx.HTTPError as e:
            logger.warning(
                "Railway request failed: operation=%s error=%s",
                operation,
                type(e).__name__,
                extra={"operation": operation},
            )
            raise RailwayAPIError(
                0, str(e) or type(e).__name__, operation=operation,
            ) from e

        self._raise_for_status(resp, operation)

        try:
            payload = resp.json()
        except ValueError as e:
            raise RailwayAPIError(
                resp.status_code,
                "response is not valid JSON",
                response_body=resp.text[:200],
                operation=operation,
            ) from e

        if not isinstance(payload, dict):
            raise RailwayAPIError(
                resp.status_code,
                f"expected JSON object, got {type(payload).__name__}",
                operation=operation,
            )

        errors = payload.get("errors")
        if errors:
            raise RailwayGraphQLError(list(errors), operation=operation)

        data = payload.get("data")
        if not isinstance(data, dict):
            raise RailwayAPIError(
                resp.status_code, "response has no data", operation=operation,
            )
        return data

    # ── Public API ───────────────────────────────────────────────

    async def list_environments(self, project_id: str) -> list[EnvironmentSummary]:
        """List the environments of a project (id and name only)."""
        data = await self.request(
            queries.LIST_ENVIRONMENTS,
            {"projectId": project_id},
            operation="environments",
        )
        return parse_environment_summaries(data)

    async def get_environment(self, environment_id: str) -> Environment | None:
        """Fetch an environment's service instances and deployment triggers.

        Returns None if Railway reports no such environment.
        """
        data = await self.request(
            queries.GET_ENVIRONMENT,
            {"id": environment_id},
            operation="environment",
        )
        node = data.get("environment")
        if not node:
            return None
        return parse_environment(node)

    async def create_environment(
        self,
        name: str,
        *,
        project_id: str,
        source_environment_id: str,
    ) -> Environment | None:
        """Create an environment cloned from a source environment.

        Raises RailwayGatewayTimeoutError / RailwayTimeoutError when the
        outcome is ambiguous; creation may still be proceeding server-side.
        """
        data = await self.request(
            queries.CREATE_ENVIRONMENT,
            {
                "input": {
                    "name": name,
                    "projectId": project_id,
                    "sourceEnvironmentId": source_environment_id,
                },
            },
            operation=CREATE_ENVIRONMENT_OPERATION,
        )
        node = data.get("environmentCreate")
        if not node:
            return None
        environment = parse_environment(node)
        logger.info(
            "Environment created: name=%s id=%s",
            name,
            environment.id,
            extra={"environment_name": name, "environment_id": environment.id},
        )
        return environment

    async def delete_environment(self, environment_id: str) -> bool:
        data = await self.request(
            queries.DELETE_ENVIRONMENT,
            {"id": environment_id},
            operation="environmentDelete",
        )
        logger.info(
            "Environment deleted: id=%s",
            environment_id,
            extra={"environment_id": environment_id},
        )
        return bool(data.get("environmentDelete"))

    async def upsert_variables(
        self,
        *,
        project_id: str,
        environment_id: str,
        service_id: str,
        variables: Mapping[str, str],
    ) -> bool:
        """Upsert a variable collection on one service instance."""
        data = await self.request(
            queries.UPSERT_VARIABLES,
            {
                "input": {
                    "projectId": project_id,
                    "environmentId": environment_id,
                    "serviceId": service_id,
                    "variables": dict(variables),
                },
            },
            operation="variableCollectionUpsert",
        )
        return bool(data.get("variableCollectionUpsert"))

    async def update_deployment_trigger(self, trigger_id: str, *, branch: str) -> str:
        """Point a deployment trigger at a new branch."""
        data = await self.request(
            queries.UPDATE_DEPLOYMENT_TRIGGER,
            {"id": trigger_id, "input": {"branch": branch}},
            operation="deploymentTriggerUpdate",
        )
        node = data.get("deploymentTriggerUpdate") or {}
        return str(node.get("id") or trigger_id)

    async def deploy_service(self, *, environment_id: str, service_id: str) -> str:
        """Trigger a deploy of one service instance and return the deployment id."""
        data = await self.request(
            queries.DEPLOY_SERVICE_INSTANCE,
            {"environmentId": environment_id, "serviceId": service_id},
            operation="serviceInstanceDeployV2",
        )
        deployment_id = data.get("serviceInstanceDeployV2")
        if not deployment_id:
            raise RailwayAPIError(
                200,
                f"no deployment id returned for service {service_id}",
                operation="serviceInstanceDeployV2",
            )
        return str(deployment_id)

    async def get_service_name(self, service_id: str) -> str:
        data = await self.request(
            queries.GET_SERVICE,
            {"id": service_id},
            operation="service",
        )
        service = data.get("service") or {}
        name = service.get("name")
        if not name:
            raise RailwayAPIError(
                200, f"service {service_id} has no name", operation="service",
            )
        return str(name)
