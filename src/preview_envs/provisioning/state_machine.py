"""Rollout job state machine.

Create flow:
  queued -> validating -> checking_existing -> resolving_source
  -> creating_environment -> configuring -> planning -> deploying -> ready

Destroy flow:
  queued -> validating -> locating -> deleting -> destroyed

Any active step may transition to terminal ``error``.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from types import MappingProxyType
from typing import Literal

OperationMode = Literal['create', 'destroy']

CREATE_SEQUENCE = (
    'queued',
    'validating',
    'checking_existing',
    'resolving_source',
    'creating_environment',
    'configuring',
    'planning',
    'deploying',
    'ready',
)

DESTROY_SEQUENCE = (
    'queued',
    'validating',
    'locating',
    'deleting',
    'destroyed',
)

SEQUENCES = MappingProxyType({'create': CREATE_SEQUENCE, 'destroy': DESTROY_SEQUENCE})

SUCCESS_STATES = frozenset({'ready', 'destroyed'})
TERMINAL_STATES = SUCCESS_STATES | {'error'}


@dataclass(frozen=True, slots=True)
class RolloutJobState:
    """State snapshot for one environment-lifecycle operation."""

    environment_name: str
    mode: OperationMode = 'create'
    state: str = 'queued'
    state_entered_at: datetime | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None
    failed_step: str | None = None
    last_error_code: str | None = None
    last_error_detail: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def succeeded(self) -> bool:
        return self.state in SUCCESS_STATES


class InvalidStateTransition(ValueError):
    """Raised for invalid rollout state transitions."""

    def __init__(self, from_state: str, to_state: str) -> None:
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(
            f'invalid state transition: {from_state!r} -> {to_state!r}'
        )


def create_queued_job(
    *,
    environment_name: str,
    mode: OperationMode = 'create',
    now: datetime | None = None,
) -> RolloutJobState:
    if mode not in SEQUENCES:
        raise ValueError(f'unknown mode {mode!r}')
    if now is not None:
        _require_aware_datetime(now)
    return RolloutJobState(
        environment_name=environment_name,
        mode=mode,
        state='queued',
        state_entered_at=now,
        started_at=now,
    )


def advance_state(job: RolloutJobState, *, now: datetime) -> RolloutJobState:
    """Advance by exactly one step of the job's sequence."""
    _require_aware_datetime(now)
    if job.is_terminal:
        raise InvalidStateTransition(job.state, 'next')

    sequence = SEQUENCES[job.mode]
    next_state = sequence[sequence.index(job.state) + 1]
    return replace(
        job,
        state=next_state,
        state_entered_at=now,
        started_at=job.started_at or now,
        finished_at=now if next_state in TERMINAL_STATES else None,
    )


def transition_to_error(
    job: RolloutJobState,
    *,
    now: datetime,
    error_code: str,
    error_detail: str,
) -> RolloutJobState:
    """Move any active (non-queued) step to terminal ``error``."""
    _require_aware_datetime(now)
    if job.is_terminal or job.state == 'queued':
        raise InvalidStateTransition(job.state, 'error')

    return replace(
        job,
        state='error',
        state_entered_at=now,
        finished_at=now,
        failed_step=job.state,
        last_error_code=error_code,
        last_error_detail=error_detail,
    )


def _require_aware_datetime(value: datetime) -> None:
    if value.tzinfo is None or value.tzinfo.utcoffset(value) is None:
        raise ValueError('now must be timezone-aware')
