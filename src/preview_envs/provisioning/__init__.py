"""Provisioning: readiness polling, rollout planning, and the job state machine.

The orchestrator is imported from ``provisioning.orchestrator`` directly.
"""

from .readiness import (
    ReadinessCheck,
    ReadinessPoller,
    ReadinessState,
    check_environment,
    resolve_created_environment,
)
from .rollout_plan import DEFAULT_API_SERVICE_NAMES, build_rollout_plan, select_api_domain
from .state_machine import (
    CREATE_SEQUENCE,
    DESTROY_SEQUENCE,
    InvalidStateTransition,
    RolloutJobState,
    advance_state,
    create_queued_job,
    transition_to_error,
)

__all__ = [
    'CREATE_SEQUENCE',
    'DEFAULT_API_SERVICE_NAMES',
    'DESTROY_SEQUENCE',
    'InvalidStateTransition',
    'ReadinessCheck',
    'ReadinessPoller',
    'ReadinessState',
    'RolloutJobState',
    'advance_state',
    'build_rollout_plan',
    'check_environment',
    'create_queued_job',
    'resolve_created_environment',
    'select_api_domain',
    'transition_to_error',
]
