"""Rollout plan construction and API-facing service selection."""

from __future__ import annotations

from typing import Iterable, Sequence

from ..errors import DeploymentOrderError
from ..models import PlannedService, RolloutPlan

DEFAULT_API_SERVICE_NAMES = ('app', 'backend', 'web')


def build_rollout_plan(
    services: Iterable[PlannedService],
    *,
    ignore: Iterable[str] = (),
    order: Sequence[str] = (),
) -> RolloutPlan:
    """Drop ignored services, then reorder to match ``order`` if given.

    Ordering matches names case-insensitively and the resulting plan has
    exactly the services named by ``order``, in that order.

    Raises:
        DeploymentOrderError: ``order`` names a service that is not in the
            environment (or was ignored).
    """
    ignored = set(ignore)
    remaining = [s for s in services if s.name not in ignored]

    if not order:
        return RolloutPlan(services=tuple(remaining), ordered=False)

    by_name: dict[str, PlannedService] = {}
    for service in remaining:
        by_name.setdefault(service.name.lower(), service)

    ordered: list[PlannedService] = []
    for name in order:
        service = by_name.get(name.lower())
        if service is None:
            raise DeploymentOrderError(name)
        ordered.append(service)
    return RolloutPlan(services=tuple(ordered), ordered=True)


def select_api_domain(
    services: Iterable[PlannedService],
    *,
    api_service_name: str | None = None,
    fallback_names: Sequence[str] = DEFAULT_API_SERVICE_NAMES,
) -> str | None:
    """Published address of the externally-facing service, if any.

    An explicitly configured name wins over the fallback names; a matching
    service without an allocated domain yields nothing.
    """
    services = list(services)
    candidates = [api_service_name] if api_service_name else []
    candidates.extend(n for n in fallback_names if n not in candidates)

    for candidate in candidates:
        for service in services:
            if service.name == candidate and service.domains:
                return service.domains[0]
    return None
