"""Domain records for Railway environments and deployments.

The Railway GraphQL API returns relay-style connections
(``{"edges": [{"node": {...}}]}``); the ``parse_*`` helpers flatten them
into immutable records so the provisioning layer never touches raw payloads.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Mapping


class DeploymentStatus(Enum):
    """Railway deployment status. Only SUCCESS, FAILED and CRASHED are terminal."""

    QUEUED = 'QUEUED'
    INITIALIZING = 'INITIALIZING'
    WAITING = 'WAITING'
    BUILDING = 'BUILDING'
    DEPLOYING = 'DEPLOYING'
    SUCCESS = 'SUCCESS'
    FAILED = 'FAILED'
    CRASHED = 'CRASHED'
    REMOVED = 'REMOVED'
    REMOVING = 'REMOVING'
    SLEEPING = 'SLEEPING'
    SKIPPED = 'SKIPPED'
    UNKNOWN = 'UNKNOWN'

    @classmethod
    def parse(cls, raw: Any) -> DeploymentStatus:
        if isinstance(raw, str):
            try:
                return cls(raw.strip().upper())
            except ValueError:
                pass
        return cls.UNKNOWN

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def is_failure(self) -> bool:
        return self in FAILURE_STATUSES


TERMINAL_STATUSES = frozenset(
    {DeploymentStatus.SUCCESS, DeploymentStatus.FAILED, DeploymentStatus.CRASHED}
)
FAILURE_STATUSES = frozenset({DeploymentStatus.FAILED, DeploymentStatus.CRASHED})


@dataclass(frozen=True, slots=True)
class ServiceInstance:
    """One service as it exists inside an environment.

    ``domains`` may be empty on a ready instance when Railway has not
    allocated an address yet.
    """

    id: str
    service_id: str
    domains: tuple[str, ...] = ()
    service_name: str | None = None


@dataclass(frozen=True, slots=True)
class DeploymentTrigger:
    """Per-service configuration of the branch a deployment builds from."""

    id: str
    branch: str | None = None
    service_id: str | None = None


@dataclass(frozen=True, slots=True)
class EnvironmentSummary:
    """Identity of an environment as returned by the list query."""

    id: str
    name: str


@dataclass(frozen=True, slots=True)
class Environment:
    """Full description of an environment."""

    id: str
    name: str
    service_instances: tuple[ServiceInstance, ...] = ()
    deployment_triggers: tuple[DeploymentTrigger, ...] = ()

    @property
    def is_ready(self) -> bool:
        """A freshly created environment is usable once it has both
        service instances and deployment triggers."""
        return bool(self.service_instances) and bool(self.deployment_triggers)


@dataclass(frozen=True, slots=True)
class PlannedService:
    """A service scheduled for deployment, with its resolved name."""

    service_id: str
    name: str
    domains: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class RolloutPlan:
    """Services to deploy. ``ordered`` means one at a time, gated on status."""

    services: tuple[PlannedService, ...] = field(default_factory=tuple)
    ordered: bool = False

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(s.name for s in self.services)

    def __len__(self) -> int:
        return len(self.services)


# ── Payload parsing ─────────────────────────────────────────────────


def _nodes(connection: Mapping[str, Any] | None) -> Iterable[Mapping[str, Any]]:
    if not connection:
        return ()
    return [
        edge['node']
        for edge in connection.get('edges') or ()
        if isinstance(edge, Mapping) and isinstance(edge.get('node'), Mapping)
    ]


def _parse_domains(raw: Mapping[str, Any] | None) -> tuple[str, ...]:
    if not raw:
        return ()
    domains: list[str] = []
    for key in ('serviceDomains', 'customDomains'):
        for entry in raw.get(key) or ():
            domain = entry.get('domain') if isinstance(entry, Mapping) else None
            if domain:
                domains.append(domain)
    return tuple(domains)


def parse_service_instance(node: Mapping[str, Any]) -> ServiceInstance:
    return ServiceInstance(
        id=str(node.get('id') or node.get('serviceId') or ''),
        service_id=str(node['serviceId']),
        domains=_parse_domains(node.get('domains')),
        service_name=node.get('serviceName'),
    )


def parse_environment(payload: Mapping[str, Any]) -> Environment:
    """Build an Environment from an ``environment``/``environmentCreate`` node."""
    return Environment(
        id=str(payload['id']),
        name=str(payload.get('name') or ''),
        service_instances=tuple(
            parse_service_instance(n) for n in _nodes(payload.get('serviceInstances'))
        ),
        deployment_triggers=tuple(
            DeploymentTrigger(
                id=str(n['id']),
                branch=n.get('branch'),
                service_id=n.get('serviceId'),
            )
            for n in _nodes(payload.get('deploymentTriggers'))
        ),
    )


def parse_environment_summaries(payload: Mapping[str, Any]) -> list[EnvironmentSummary]:
    """Flatten the ``environments`` connection of a list query."""
    return [
        EnvironmentSummary(id=str(n['id']), name=str(n.get('name') or ''))
        for n in _nodes(payload.get('environments'))
    ]
