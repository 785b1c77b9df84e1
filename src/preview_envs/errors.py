"""Error taxonomy for preview environment operations.

Configuration errors are fatal and never retried. Platform errors raised by
the Railway client live beside it in ``providers.railway_client``.

Every error carries a stable ``code`` so the orchestrator can report the
failure to the host with an actionable reason.
"""

from __future__ import annotations


class PreviewEnvError(Exception):
    """Base error for preview environment operations."""

    code = 'preview_env_error'


# ── Configuration errors (fatal, no retry) ──────────────────────────


class ConfigurationError(PreviewEnvError, ValueError):
    """Invalid or missing operator input."""

    code = 'configuration_error'


class SettingsError(ConfigurationError):
    """A raw input value could not be parsed."""

    code = 'invalid_setting'


class MissingInputError(ConfigurationError):
    """Required identifying inputs are absent."""

    code = 'missing_required_input'

    def __init__(self, missing: list[str]) -> None:
        self.missing = tuple(missing)
        super().__init__('missing required input: ' + ', '.join(missing))


class EnvironmentExistsError(ConfigurationError):
    """Destination environment already exists on create."""

    code = 'environment_exists'

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(
            f'environment {name!r} already exists; delete it via the API '
            f'or the Railway dashboard and try again'
        )


class EnvironmentNotFoundError(ConfigurationError):
    """A named environment could not be located."""

    code = 'environment_not_found'

    def __init__(self, name: str, *, code: str | None = None) -> None:
        self.name = name
        if code:
            self.code = code
        super().__init__(f'environment {name!r} does not exist')


class EnvironmentAmbiguousError(ConfigurationError):
    """More than one environment matches a name that must be unique."""

    code = 'environment_ambiguous'

    def __init__(self, name: str, count: int) -> None:
        self.name = name
        self.count = count
        super().__init__(
            f'environment name {name!r} matches {count} environments; '
            f'expected exactly one'
        )


class DeploymentOrderError(ConfigurationError):
    """Explicit deployment order names a service absent from the environment."""

    code = 'deployment_order_invalid'

    def __init__(self, service_name: str) -> None:
        self.service_name = service_name
        super().__init__(f'service {service_name!r} not found in the environment')


# ── Runtime failures ────────────────────────────────────────────────


class EnvironmentNotReadyError(PreviewEnvError):
    """Created environment never satisfied the readiness invariant."""

    code = 'environment_not_ready'

    def __init__(self, name: str, attempts: int) -> None:
        self.name = name
        self.attempts = attempts
        super().__init__(
            f'environment {name!r} not ready after {attempts} polling attempts'
        )


class DeploymentFailedError(PreviewEnvError):
    """A deployment reached a failing terminal status."""

    code = 'deployment_failed'

    def __init__(self, service_name: str, deployment_id: str, status: str) -> None:
        self.service_name = service_name
        self.deployment_id = deployment_id
        self.status = status
        super().__init__(
            f'deployment {deployment_id} of service {service_name!r} '
            f'finished with status {status}'
        )
