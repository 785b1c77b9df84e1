"""Rollout configuration.

RolloutSettings is the single configuration value threaded into the client,
subscriber, poller, and orchestrator. It is a plain dataclass (not
env-coupled) so tests can fabricate config without touching os.environ;
``from_env`` reads GitHub Actions style inputs for production use.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping

from .errors import SettingsError
from .providers.deployment_subscriber import DEFAULT_TIMEOUT_SECONDS, DEFAULT_WS_ENDPOINT
from .providers.railway_client import DEFAULT_ENDPOINT
from .provisioning.readiness import DEFAULT_INITIAL_DELAY_SECONDS, DEFAULT_MAX_ATTEMPTS
from .provisioning.rollout_plan import DEFAULT_API_SERVICE_NAMES

VALID_MODES = ('create', 'destroy')


@dataclass(frozen=True, slots=True)
class RolloutSettings:
    """Configuration for one environment-lifecycle operation."""

    # ── Operation ──────────────────────────────────────────────────
    mode: str = 'create'
    """One of: create, destroy."""

    # ── Railway ────────────────────────────────────────────────────
    railway_api_token: str = field(default='', repr=False)
    """Bearer token for both API channels. Never log this."""

    project_id: str = ''
    dest_env_name: str = ''
    """Destination environment name, unique within the project."""

    src_environment_name: str = ''
    src_environment_id: str = ''

    endpoint: str = DEFAULT_ENDPOINT
    ws_endpoint: str = DEFAULT_WS_ENDPOINT

    # ── Source & variables ────────────────────────────────────────
    branch_name: str = ''
    """Branch every deployment trigger is pointed at."""

    env_vars: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))

    # ── Rollout ────────────────────────────────────────────────────
    api_service_name: str = ''
    api_service_fallback_names: tuple[str, ...] = DEFAULT_API_SERVICE_NAMES
    deployment_order: tuple[str, ...] = ()
    ignore_services: tuple[str, ...] = ()
    deployment_max_timeout: float = DEFAULT_TIMEOUT_SECONDS
    """Maximum seconds to wait for one deployment in ordered mode."""

    poll_max_attempts: int = DEFAULT_MAX_ATTEMPTS
    poll_initial_delay: float = DEFAULT_INITIAL_DELAY_SECONDS

    @property
    def is_create(self) -> bool:
        return self.mode == 'create'

    @property
    def enforce_order(self) -> bool:
        return bool(self.deployment_order)

    def validate(self) -> list[str]:
        """Return a list of configuration errors. Empty means valid."""
        errors: list[str] = []
        if self.mode not in VALID_MODES:
            errors.append(
                f'mode: invalid value {self.mode!r}; only create and destroy are allowed'
            )
        if not self.railway_api_token:
            errors.append('railway_api_token is required')
        if not self.project_id:
            errors.append('project_id is required')
        if not self.dest_env_name:
            errors.append('dest_env_name is required')
        if self.is_create and not (self.src_environment_name or self.src_environment_id):
            errors.append(
                'create: src_environment_name or src_environment_id is required'
            )
        if self.deployment_max_timeout <= 0:
            errors.append('deployment_max_timeout must be > 0')
        if self.poll_max_attempts < 1:
            errors.append('poll_max_attempts must be >= 1')
        return errors

    def missing_identifiers(self) -> list[str]:
        """Names of the identifying inputs an operation cannot start without."""
        missing = [
            name for name, value in (
                ('DEST_ENV_NAME', self.dest_env_name),
                ('PROJECT_ID', self.project_id),
            ) if not value
        ]
        if self.is_create and not (self.src_environment_name or self.src_environment_id):
            missing.append('SRC_ENVIRONMENT_NAME or SRC_ENVIRONMENT_ID')
        return missing

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> RolloutSettings:
        """Build settings from environment variables.

        Each input is read from ``INPUT_<NAME>`` (GitHub Actions) and falls
        back to ``<NAME>``.

        Raises:
            SettingsError: A value is malformed.
        """
        if env is None:
            env = dict(os.environ)

        def get(name: str, default: str = '') -> str:
            value = env.get(f'INPUT_{name}')
            if value is None or not value.strip():
                value = env.get(name, default)
            return (value or '').strip()

        max_timeout = get('MAX_TIMEOUT')
        return cls(
            mode=get('MODE', 'CREATE').lower(),
            railway_api_token=get('RAILWAY_API_TOKEN'),
            project_id=get('PROJECT_ID'),
            dest_env_name=get('DEST_ENV_NAME'),
            src_environment_name=get('SRC_ENVIRONMENT_NAME'),
            src_environment_id=get('SRC_ENVIRONMENT_ID'),
            endpoint=get('RAILWAY_ENDPOINT') or DEFAULT_ENDPOINT,
            ws_endpoint=get('RAILWAY_WS_ENDPOINT') or DEFAULT_WS_ENDPOINT,
            branch_name=get('BRANCH_NAME'),
            env_vars=parse_env_vars(get('ENV_VARS')),
            api_service_name=get('API_SERVICE_NAME'),
            api_service_fallback_names=(
                parse_name_list(get('API_SERVICE_FALLBACK_NAMES'), 'API_SERVICE_FALLBACK_NAMES')
                or DEFAULT_API_SERVICE_NAMES
            ),
            deployment_order=parse_name_list(get('DEPLOYMENT_ORDER'), 'DEPLOYMENT_ORDER'),
            ignore_services=parse_name_list(
                get('IGNORE_SERVICE_REDEPLOY'), 'IGNORE_SERVICE_REDEPLOY',
            ),
            deployment_max_timeout=(
                parse_seconds(max_timeout, 'MAX_TIMEOUT') if max_timeout
                else DEFAULT_TIMEOUT_SECONDS
            ),
        )


# ── Parsing helpers ─────────────────────────────────────────────────


def parse_env_vars(raw: str) -> Mapping[str, str]:
    """Parse the serialized variable set (a JSON object) into a mapping."""
    if not raw:
        return MappingProxyType({})
    try:
        payload: Any = json.loads(raw)
    except ValueError as exc:
        raise SettingsError(f'ENV_VARS is not valid JSON: {exc.msg}') from None
    if not isinstance(payload, dict):
        raise SettingsError(
            f'ENV_VARS must be a JSON object, got {type(payload).__name__}'
        )
    return MappingProxyType({
        str(k): v if isinstance(v, str) else json.dumps(v)
        for k, v in payload.items()
    })


def parse_name_list(raw: str, input_name: str) -> tuple[str, ...]:
    """Accept a JSON array of names or a comma-separated list."""
    if not raw:
        return ()
    if raw.startswith('['):
        try:
            payload = json.loads(raw)
        except ValueError as exc:
            raise SettingsError(f'{input_name} is not valid JSON: {exc.msg}') from None
        if not all(isinstance(item, str) for item in payload):
            raise SettingsError(f'{input_name} must be a list of service names')
        names = payload
    else:
        names = raw.split(',')
    return tuple(n.strip() for n in names if n.strip())


def parse_seconds(raw: str, input_name: str) -> float:
    try:
        value = float(raw)
    except ValueError:
        raise SettingsError(f'{input_name} must be a number of seconds, got {raw!r}') from None
    if value <= 0:
        raise SettingsError(f'{input_name} must be > 0')
    return value
