"""Readiness polling for freshly created environments.

Railway's ``environmentCreate`` can return before service instances and
deployment triggers are wired up, or time out at the gateway while
creation continues server-side. Both cases are absorbed here:

  polling -> found_ready | found_incomplete | not_found | exhausted

``check_environment`` is the single read used for both existence and
readiness; ``ReadinessPoller`` wraps it in bounded exponential backoff
(delay doubles after every unsuccessful attempt, no ceiling).
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Protocol

from ..models import Environment, EnvironmentSummary
from ..providers.railway_client import RailwayAPIError

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 6
DEFAULT_INITIAL_DELAY_SECONDS = 2.0
BACKOFF_FACTOR = 2.0


class EnvironmentReader(Protocol):
    """Read side of the Railway client used for polling."""

    async def list_environments(self, project_id: str) -> list[EnvironmentSummary]: ...
    async def get_environment(self, environment_id: str) -> Environment | None: ...


class ReadinessState(Enum):
    POLLING = 'polling'
    FOUND_READY = 'found_ready'
    FOUND_INCOMPLETE = 'found_incomplete'
    NOT_FOUND = 'not_found'
    EXHAUSTED = 'exhausted'


@dataclass(frozen=True, slots=True)
class ReadinessCheck:
    """Tagged result of one readiness check."""

    state: ReadinessState
    environment: Environment | None = None

    @property
    def ready(self) -> bool:
        return self.state is ReadinessState.FOUND_READY


def find_by_name(
    environments: list[EnvironmentSummary],
    name: str,
) -> list[EnvironmentSummary]:
    """Exact-name matches; names are the human-facing correlation key."""
    return [env for env in environments if env.name == name]


async def check_environment(
    reader: EnvironmentReader,
    *,
    project_id: str,
    name: str,
) -> ReadinessCheck:
    """List, locate by name, then fetch and evaluate the readiness invariant."""
    matches = find_by_name(await reader.list_environments(project_id), name)
    if not matches:
        return ReadinessCheck(ReadinessState.NOT_FOUND)

    environment = await reader.get_environment(matches[0].id)
    if environment is None:
        return ReadinessCheck(ReadinessState.NOT_FOUND)
    if environment.is_ready:
        return ReadinessCheck(ReadinessState.FOUND_READY, environment)
    return ReadinessCheck(ReadinessState.FOUND_INCOMPLETE, environment)


class ReadinessPoller:
    """Bounded-retry wrapper around ``check_environment``."""

    def __init__(
        self,
        reader: EnvironmentReader,
        *,
        project_id: str,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        initial_delay: float = DEFAULT_INITIAL_DELAY_SECONDS,
        backoff_factor: float = BACKOFF_FACTOR,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError('max_attempts must be >= 1')
        if initial_delay < 0:
            raise ValueError('initial_delay must be >= 0')

        self._reader = reader
        self._project_id = project_id
        self._max_attempts = max_attempts
        self._initial_delay = float(initial_delay)
        self._backoff_factor = float(backoff_factor)
        self._sleep = sleep
        self.attempts = 0
        self.last_state = ReadinessState.POLLING

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    def delay_for_retry(self, retry: int) -> float:
        """Sleep before the ``retry``-th retry (1-based): D * 2**(retry-1)."""
        return self._initial_delay * self._backoff_factor ** (retry - 1)

    async def poll(self, name: str) -> Environment | None:
        """Return the ready environment, or None once attempts are exhausted."""
        self.attempts = 0
        self.last_state = ReadinessState.POLLING

        while True:
            self.attempts += 1
            logger.info(
                'Polling for environment %s (attempt %d/%d)',
                name,
                self.attempts,
                self._max_attempts,
                extra={'environment_name': name, 'attempt': self.attempts},
            )
            check = await self._check(name)
            self.last_state = check.state
            if check.ready:
                logger.info(
                    'Environment %s is ready',
                    name,
                    extra={'environment_name': name, 'attempt': self.attempts},
                )
                return check.environment

            if self.attempts >= self._max_attempts:
                self.last_state = ReadinessState.EXHAUSTED
                logger.warning(
                    'Reached maximum attempts (%d); environment %s not ready (%s)',
                    self._max_attempts,
                    name,
                    check.state.value,
                    extra={'environment_name': name},
                )
                return None

            delay = self.delay_for_retry(self.attempts)
            logger.info(
                'Environment %s %s; retrying in %.1fs',
                name,
                check.state.value.replace('_', ' '),
                delay,
                extra={'environment_name': name, 'delay_seconds': delay},
            )
            await self._sleep(delay)

    async def _check(self, name: str) -> ReadinessCheck:
        try:
            return await check_environment(
                self._reader, project_id=self._project_id, name=name,
            )
        except Exception:
            # Reads during polling are retried like a missing environment.
            logger.warning(
                'Readiness check for %s failed',
                name,
                extra={'environment_name': name},
                exc_info=True,
            )
            return ReadinessCheck(ReadinessState.NOT_FOUND)


class EnvironmentCreator(Protocol):
    async def create_environment(
        self,
        name: str,
        *,
        project_id: str,
        source_environment_id: str,
    ) -> Environment | None: ...


async def resolve_created_environment(
    creator: EnvironmentCreator,
    poller: ReadinessPoller,
    *,
    name: str,
    project_id: str,
    source_environment_id: str,
) -> Environment | None:
    """Create an environment, escalating to polling on an ambiguous result.

    A gateway-timeout class error or a description that fails the readiness
    invariant falls back to ``poller``. Any other error propagates. Returns
    None when polling exhausts without a ready environment.
    """
    try:
        created = await creator.create_environment(
            name,
            project_id=project_id,
            source_environment_id=source_environment_id,
        )
    except RailwayAPIError as exc:
        if not exc.is_gateway_timeout:
            raise
        logger.warning(
            'Environment create for %s timed out; polling for it',
            name,
            extra={'environment_name': name},
        )
        return await poller.poll(name)

    if created is not None and created.is_ready:
        return created

    logger.info(
        'Environment %s returned incomplete; polling until ready',
        name,
        extra={'environment_name': name},
    )
    return await poller.poll(name)
