"""In-memory Railway gateway and deployment waiter (local runs and tests).

Both record every call into a shared ``events`` list so tests can assert on
cross-component ordering (e.g. a deploy never precedes the previous wait).
"""

from __future__ import annotations

import asyncio
from dataclasses import replace
from typing import Any, Mapping

from .models import (
    DeploymentStatus,
    Environment,
    EnvironmentSummary,
)
from .providers.deployment_subscriber import (
    DeploymentTimeoutError,
    SubscriptionOutcome,
    SubscriptionResult,
)
from .providers.railway_client import RailwayAPIError, RailwayGatewayTimeoutError


class InMemoryRailwayClient:
    """Fake Railway gateway.

    ``create_mode`` controls what ``create_environment`` does with the
    ``created`` template:
      - ``ready``: store it and return it.
      - ``incomplete``: store it, return it without instances/triggers.
      - ``timeout``: store it, raise RailwayGatewayTimeoutError.
      - ``error``: raise RailwayAPIError, store nothing.

    ``ready_after_reads`` hides instances and triggers from the first N
    ``get_environment`` reads of the created environment.
    """

    def __init__(
        self,
        *,
        environments: list[Environment] | None = None,
        created: Environment | None = None,
        create_mode: str = 'ready',
        ready_after_reads: int = 0,
        service_names: Mapping[str, str] | None = None,
        fail_variables_for: set[str] | None = None,
        fail_triggers_for: set[str] | None = None,
        fail_deploy_for: set[str] | None = None,
        events: list[tuple[str, str]] | None = None,
    ) -> None:
        self.environments: dict[str, Environment] = {
            env.id: env for env in environments or ()
        }
        self.created = created
        self.create_mode = create_mode
        self.ready_after_reads = ready_after_reads
        self.service_names = dict(service_names or {})
        self.fail_variables_for = fail_variables_for or set()
        self.fail_triggers_for = fail_triggers_for or set()
        self.fail_deploy_for = fail_deploy_for or set()
        self.events = events if events is not None else []
        self.variables: dict[str, dict[str, str]] = {}
        self.trigger_branches: dict[str, str] = {}
        self.deleted: list[str] = []
        self._reads: dict[str, int] = {}

    def _record(self, method: str, arg: str) -> None:
        self.events.append((method, arg))

    def calls(self, method: str) -> list[str]:
        return [arg for name, arg in self.events if name == method]

    async def list_environments(self, project_id: str) -> list[EnvironmentSummary]:
        self._record('list_environments', project_id)
        return [EnvironmentSummary(id=e.id, name=e.name) for e in self.environments.values()]

    async def get_environment(self, environment_id: str) -> Environment | None:
        self._record('get_environment', environment_id)
        env = self.environments.get(environment_id)
        if env is None:
            return None
        reads = self._reads.get(environment_id, 0) + 1
        self._reads[environment_id] = reads
        if self.created is not None and env.id == self.created.id and reads <= self.ready_after_reads:
            return replace(env, service_instances=(), deployment_triggers=())
        return env

    async def create_environment(
        self,
        name: str,
        *,
        project_id: str,
        source_environment_id: str,
    ) -> Environment | None:
        self._record('create_environment', name)
        if self.create_mode == 'error' or self.created is None:
            raise RailwayAPIError(400, f'cannot create environment {name}')
        env = replace(self.created, name=name)
        self.created = env
        self.environments[env.id] = env
        if self.create_mode == 'timeout':
            raise RailwayGatewayTimeoutError()
        if self.create_mode == 'incomplete':
            return replace(env, service_instances=(), deployment_triggers=())
        return env

    async def delete_environment(self, environment_id: str) -> bool:
        self._record('delete_environment', environment_id)
        self.environments.pop(environment_id, None)
        self.deleted.append(environment_id)
        return True

    async def upsert_variables(
        self,
        *,
        project_id: str,
        environment_id: str,
        service_id: str,
        variables: Mapping[str, str],
    ) -> bool:
        self._record('upsert_variables', service_id)
        await asyncio.sleep(0)
        if service_id in self.fail_variables_for:
            raise RailwayAPIError(500, f'variable upsert failed for {service_id}')
        self.variables[service_id] = dict(variables)
        return True

    async def update_deployment_trigger(self, trigger_id: str, *, branch: str) -> str:
        self._record('update_deployment_trigger', trigger_id)
        await asyncio.sleep(0)
        if trigger_id in self.fail_triggers_for:
            raise RailwayAPIError(500, f'trigger update failed for {trigger_id}')
        self.trigger_branches[trigger_id] = branch
        return trigger_id

    async def deploy_service(self, *, environment_id: str, service_id: str) -> str:
        self._record('deploy_service', service_id)
        await asyncio.sleep(0)
        if service_id in self.fail_deploy_for:
            raise RailwayAPIError(500, f'deploy failed for {service_id}')
        return f'dep-{service_id}'

    async def get_service_name(self, service_id: str) -> str:
        self._record('get_service_name', service_id)
        try:
            return self.service_names[service_id]
        except KeyError:
            raise RailwayAPIError(404, f'service {service_id} not found') from None


class InMemoryDeploymentSubscriber:
    """Fake deployment waiter resolving from a status table.

    ``statuses`` maps deployment id to the terminal status to report
    (default SUCCESS); ``None`` means the channel closed without a terminal
    status. Ids in ``time_out`` raise DeploymentTimeoutError.
    """

    def __init__(
        self,
        *,
        statuses: Mapping[str, DeploymentStatus | None] | None = None,
        time_out: set[str] | None = None,
        events: list[tuple[str, str]] | None = None,
    ) -> None:
        self.statuses: dict[str, Any] = dict(statuses or {})
        self.time_out = time_out or set()
        self.events = events if events is not None else []

    async def wait_for_completion(self, deployment_id: str) -> SubscriptionResult:
        self.events.append(('wait_started', deployment_id))
        await asyncio.sleep(0)
        try:
            if deployment_id in self.time_out:
                raise DeploymentTimeoutError(deployment_id, 900.0)
            status = self.statuses.get(deployment_id, DeploymentStatus.SUCCESS)
            if status is None:
                return SubscriptionResult(deployment_id, SubscriptionOutcome.UNKNOWN_COMPLETED)
            if status is DeploymentStatus.SUCCESS:
                return SubscriptionResult(deployment_id, SubscriptionOutcome.SUCCEEDED, status)
            return SubscriptionResult(deployment_id, SubscriptionOutcome.FAILED, status)
        finally:
            self.events.append(('wait_resolved', deployment_id))
