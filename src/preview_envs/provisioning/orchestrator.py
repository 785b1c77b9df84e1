"""Rollout orchestrator: one environment-lifecycle operation.

Create drives the job through:
  validating -> checking_existing -> resolving_source -> creating_environment
  -> configuring -> planning -> deploying -> ready

At each step the orchestrator:
  1. Advances the state machine.
  2. Performs the step via the injected client / subscriber / poller.
  3. Transitions to ``error`` with an actionable code on a fatal failure.

Fan-out batches (variables, trigger branches, unordered deploys) settle every
member before the next step; a member failure is logged and recorded in
``RolloutResult.fanout_failures`` but never aborts its siblings.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Mapping, Protocol, Sequence

from ..errors import (
    DeploymentFailedError,
    EnvironmentAmbiguousError,
    EnvironmentExistsError,
    EnvironmentNotFoundError,
    EnvironmentNotReadyError,
    MissingInputError,
    PreviewEnvError,
)
from ..models import (
    Environment,
    EnvironmentSummary,
    PlannedService,
    RolloutPlan,
)
from ..observability.logging import get_logger
from ..providers.deployment_subscriber import DeploymentTimeoutError, SubscriptionResult
from ..providers.railway_client import RailwayAPIError
from ..settings import RolloutSettings
from .readiness import ReadinessPoller, find_by_name, resolve_created_environment
from .rollout_plan import build_rollout_plan, select_api_domain
from .state_machine import (
    RolloutJobState,
    advance_state,
    create_queued_job,
    transition_to_error,
)

logger = get_logger(__name__)

# Error code for a platform failure, by the step it happened in.
_PLATFORM_ERROR_CODES = {
    'checking_existing': 'platform_error',
    'resolving_source': 'platform_error',
    'creating_environment': 'environment_create_failed',
    'planning': 'service_lookup_failed',
    'deploying': 'deploy_trigger_failed',
    'locating': 'platform_error',
    'deleting': 'environment_delete_failed',
}


# ── Collaborator protocols ───────────────────────────────────────────


class RailwayGateway(Protocol):
    """The subset of RailwayClient the orchestrator drives."""

    async def list_environments(self, project_id: str) -> list[EnvironmentSummary]: ...
    async def get_environment(self, environment_id: str) -> Environment | None: ...
    async def create_environment(
        self, name: str, *, project_id: str, source_environment_id: str,
    ) -> Environment | None: ...
    async def delete_environment(self, environment_id: str) -> bool: ...
    async def upsert_variables(
        self,
        *,
        project_id: str,
        environment_id: str,
        service_id: str,
        variables: Mapping[str, str],
    ) -> bool: ...
    async def update_deployment_trigger(self, trigger_id: str, *, branch: str) -> str: ...
    async def deploy_service(self, *, environment_id: str, service_id: str) -> str: ...
    async def get_service_name(self, service_id: str) -> str: ...


class DeploymentWaiter(Protocol):
    async def wait_for_completion(self, deployment_id: str) -> SubscriptionResult: ...


# ── Results ──────────────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class FanoutFailure:
    """One failed member of a fan-out batch."""

    kind: str
    target: str
    detail: str


@dataclass(frozen=True, slots=True)
class RolloutResult:
    """Outcome of one create or destroy operation."""

    job: RolloutJobState
    success: bool
    environment_id: str | None = None
    service_domain: str | None = None
    deployed: tuple[str, ...] = ()
    fanout_failures: tuple[FanoutFailure, ...] = ()
    error_code: str | None = None
    error_detail: str | None = None


class _RolloutAborted(Exception):
    def __init__(self, code: str, detail: str) -> None:
        self.code = code
        self.detail = detail
        super().__init__(detail)


# ── Orchestrator ─────────────────────────────────────────────────────


class RolloutOrchestrator:
    """Creates or destroys one preview environment.

    Not safe for concurrent invocations against the same destination name;
    the existence check before create is best-effort, not a lock.
    """

    def __init__(
        self,
        settings: RolloutSettings,
        *,
        client: RailwayGateway,
        subscriber: DeploymentWaiter,
        poller: ReadinessPoller | None = None,
    ) -> None:
        self._settings = settings
        self._client = client
        self._subscriber = subscriber
        self._poller = poller or ReadinessPoller(
            client,
            project_id=settings.project_id,
            max_attempts=settings.poll_max_attempts,
            initial_delay=settings.poll_initial_delay,
        )
        self._failures: list[FanoutFailure] = []

    async def run(self) -> RolloutResult:
        if self._settings.mode == 'destroy':
            return await self.destroy()
        if self._settings.mode == 'create':
            return await self.create()
        raise ValueError(
            f'invalid mode {self._settings.mode!r}; only create and destroy are allowed'
        )

    # ── Create ───────────────────────────────────────────────────────

    async def create(self) -> RolloutResult:
        s = self._settings
        self._failures = []
        job = create_queued_job(environment_name=s.dest_env_name, mode='create', now=_now())
        environment: Environment | None = None
        deployed: list[str] = []

        try:
            # validating
            job = advance_state(job, now=_now())
            self._require_inputs()

            # checking_existing
            job = advance_state(job, now=_now())
            environments = await self._client.list_environments(s.project_id)
            if find_by_name(environments, s.dest_env_name):
                raise EnvironmentExistsError(s.dest_env_name)

            # resolving_source
            job = advance_state(job, now=_now())
            source_id = self._resolve_source_id(environments)

            # creating_environment
            job = advance_state(job, now=_now())
            environment = await resolve_created_environment(
                self._client,
                self._poller,
                name=s.dest_env_name,
                project_id=s.project_id,
                source_environment_id=source_id,
            )
            if environment is None:
                raise EnvironmentNotReadyError(s.dest_env_name, self._poller.attempts)
            logger.info(
                'environment_ready',
                environment_id=environment.id,
                service_instances=len(environment.service_instances),
                deployment_triggers=len(environment.deployment_triggers),
            )

            # configuring
            job = advance_state(job, now=_now())
            await self._update_variables(environment)
            await self._update_triggers(environment)

            # planning
            job = advance_state(job, now=_now())
            services = await self._resolve_services(environment)
            plan = build_rollout_plan(
                services, ignore=s.ignore_services, order=s.deployment_order,
            )
            logger.info('rollout_planned', services=list(plan.names), ordered=plan.ordered)

            # deploying
            job = advance_state(job, now=_now())
            if plan.ordered:
                await self._deploy_ordered(environment.id, plan, deployed)
            else:
                deployed.extend(await self._deploy_unordered(environment.id, plan))

            domain = select_api_domain(
                services,
                api_service_name=s.api_service_name or None,
                fallback_names=s.api_service_fallback_names,
            )
            if domain:
                logger.info('service_domain', domain=domain)
            else:
                logger.info('service_domain_unavailable')

            job = advance_state(job, now=_now())
        except Exception as exc:
            return self._failed(
                job, exc,
                environment_id=environment.id if environment else None,
                deployed=tuple(deployed),
            )

        return RolloutResult(
            job=job,
            success=True,
            environment_id=environment.id,
            service_domain=domain,
            deployed=tuple(deployed),
            fanout_failures=tuple(self._failures),
        )

    def _require_inputs(self) -> None:
        missing = self._settings.missing_identifiers()
        if missing:
            raise MissingInputError(missing)

    def _resolve_source_id(self, environments: Sequence[EnvironmentSummary]) -> str:
        s = self._settings
        if s.src_environment_id:
            return s.src_environment_id
        matches = find_by_name(list(environments), s.src_environment_name)
        if not matches:
            raise EnvironmentNotFoundError(
                s.src_environment_name, code='source_environment_not_found',
            )
        return matches[0].id

    async def _update_variables(self, environment: Environment) -> None:
        s = self._settings
        if not s.env_vars:
            logger.info('variables_skipped', reason='empty variable set')
            return
        await self._settle(
            'variables',
            [
                (
                    instance.service_id,
                    self._client.upsert_variables(
                        project_id=s.project_id,
                        environment_id=environment.id,
                        service_id=instance.service_id,
                        variables=s.env_vars,
                    ),
                )
                for instance in environment.service_instances
            ],
        )

    async def _update_triggers(self, environment: Environment) -> None:
        branch = self._settings.branch_name
        if not branch:
            logger.warning('trigger_update_skipped', reason='no branch name configured')
            return
        await self._settle(
            'trigger',
            [
                (
                    trigger.id,
                    self._client.update_deployment_trigger(trigger.id, branch=branch),
                )
                for trigger in environment.deployment_triggers
            ],
        )

    async def _resolve_services(self, environment: Environment) -> list[PlannedService]:
        instances = environment.service_instances
        # Every lookup settles before the first failure is raised.
        names = await asyncio.gather(
            *(self._client.get_service_name(i.service_id) for i in instances),
            return_exceptions=True,
        )
        for name in names:
            if isinstance(name, BaseException):
                raise name
        return [
            PlannedService(service_id=i.service_id, name=name, domains=i.domains)
            for i, name in zip(instances, names)
        ]

    async def _deploy_ordered(
        self,
        environment_id: str,
        plan: RolloutPlan,
        deployed: list[str],
    ) -> None:
        """Deploy one service at a time; the next starts only after the previous resolves."""
        for service in plan.services:
            try:
                deployment_id = await self._client.deploy_service(
                    environment_id=environment_id, service_id=service.service_id,
                )
            except RailwayAPIError as exc:
                raise _RolloutAborted(
                    'deploy_trigger_failed',
                    f'deploy of service {service.name!r} failed: {exc}',
                ) from exc
            logger.info('deployment_started', service=service.name, deployment_id=deployment_id)

            try:
                result = await self._subscriber.wait_for_completion(deployment_id)
            except DeploymentTimeoutError as exc:
                raise _RolloutAborted(
                    'deployment_timeout', f'service {service.name!r}: {exc}',
                ) from exc
            except Exception as exc:
                raise _RolloutAborted(
                    'deployment_failed',
                    f'status subscription for service {service.name!r} failed: {exc}',
                ) from exc

            if result.failed:
                status = result.status.value if result.status else 'FAILED'
                raise DeploymentFailedError(service.name, deployment_id, status)
            logger.info(
                'deployment_finished',
                service=service.name,
                deployment_id=deployment_id,
                outcome=result.outcome.value,
            )
            deployed.append(service.name)

    async def _deploy_unordered(self, environment_id: str, plan: RolloutPlan) -> tuple[str, ...]:
        results = await self._settle(
            'deploy',
            [
                (
                    service.name,
                    self._client.deploy_service(
                        environment_id=environment_id, service_id=service.service_id,
                    ),
                )
                for service in plan.services
            ],
        )
        return tuple(
            service.name
            for service, result in zip(plan.services, results)
            if not isinstance(result, BaseException)
        )

    async def _settle(
        self,
        kind: str,
        batch: list[tuple[str, Awaitable[Any]]],
    ) -> list[Any]:
        """Run a fan-out batch to completion, logging each member failure."""
        results = await asyncio.gather(*(aw for _, aw in batch), return_exceptions=True)
        failed = 0
        for (target, _), result in zip(batch, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                failed += 1
                self._failures.append(FanoutFailure(kind=kind, target=target, detail=str(result)))
                logger.error('fanout_item_failed', kind=kind, target=target, error=str(result))
        logger.info('fanout_settled', kind=kind, total=len(batch), failed=failed)
        return results

    # ── Destroy ──────────────────────────────────────────────────────

    async def destroy(self) -> RolloutResult:
        s = self._settings
        self._failures = []
        job = create_queued_job(environment_name=s.dest_env_name, mode='destroy', now=_now())
        environment_id: str | None = None

        try:
            # validating
            job = advance_state(job, now=_now())
            self._require_inputs()

            # locating
            job = advance_state(job, now=_now())
            matches = find_by_name(
                await self._client.list_environments(s.project_id), s.dest_env_name,
            )
            if not matches:
                raise EnvironmentNotFoundError(s.dest_env_name)
            if len(matches) > 1:
                raise EnvironmentAmbiguousError(s.dest_env_name, len(matches))
            environment_id = matches[0].id

            # deleting
            job = advance_state(job, now=_now())
            await self._client.delete_environment(environment_id)

            job = advance_state(job, now=_now())
        except Exception as exc:
            return self._failed(job, exc, environment_id=environment_id)

        logger.info('environment_destroyed', environment_id=environment_id)
        return RolloutResult(job=job, success=True, environment_id=environment_id)

    # ── Failure handling ─────────────────────────────────────────────

    def _failed(
        self,
        job: RolloutJobState,
        exc: Exception,
        *,
        environment_id: str | None = None,
        deployed: tuple[str, ...] = (),
    ) -> RolloutResult:
        code = _error_code(job.state, exc)
        detail = exc.detail if isinstance(exc, _RolloutAborted) else str(exc)
        logger.error(
            'operation_failed',
            step=job.state,
            error_code=code,
            error=detail,
            exc_info=not isinstance(exc, (PreviewEnvError, RailwayAPIError, _RolloutAborted)),
        )
        job = transition_to_error(job, now=_now(), error_code=code, error_detail=detail)
        return RolloutResult(
            job=job,
            success=False,
            environment_id=environment_id,
            deployed=deployed,
            fanout_failures=tuple(self._failures),
            error_code=code,
            error_detail=detail,
        )


def _error_code(step: str, exc: Exception) -> str:
    if isinstance(exc, _RolloutAborted):
        return exc.code
    if isinstance(exc, PreviewEnvError):
        return exc.code
    if isinstance(exc, DeploymentTimeoutError):
        return 'deployment_timeout'
    if isinstance(exc, RailwayAPIError):
        return _PLATFORM_ERROR_CODES.get(step, 'platform_error')
    return 'platform_error'


def _now() -> datetime:
    """UTC-aware now for state transitions."""
    return datetime.now(timezone.utc)
