"""Rollout job state machine tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from preview_envs.provisioning.state_machine import (
    CREATE_SEQUENCE,
    DESTROY_SEQUENCE,
    InvalidStateTransition,
    advance_state,
    create_queued_job,
    transition_to_error,
)

T0 = datetime(2026, 1, 1, tzinfo=timezone.utc)


def _walk(mode: str):
    job = create_queued_job(environment_name='pr-42', mode=mode, now=T0)
    states = [job.state]
    while not job.is_terminal:
        job = advance_state(job, now=T0 + timedelta(seconds=len(states)))
        states.append(job.state)
    return job, states


def test_create_sequence_is_walked_in_order():
    job, states = _walk('create')
    assert tuple(states) == CREATE_SEQUENCE
    assert job.succeeded
    assert job.finished_at is not None
    assert job.started_at == T0


def test_destroy_sequence_is_walked_in_order():
    job, states = _walk('destroy')
    assert tuple(states) == DESTROY_SEQUENCE
    assert job.state == 'destroyed'


def test_terminal_state_cannot_advance():
    job, _ = _walk('create')
    with pytest.raises(InvalidStateTransition):
        advance_state(job, now=T0)


def test_error_records_failed_step_and_code():
    job = create_queued_job(environment_name='pr-42', now=T0)
    job = advance_state(job, now=T0)
    job = advance_state(job, now=T0)

    failed = transition_to_error(
        job, now=T0, error_code='environment_exists', error_detail='exists',
    )

    assert failed.state == 'error'
    assert failed.failed_step == 'checking_existing'
    assert failed.last_error_code == 'environment_exists'
    assert failed.is_terminal and not failed.succeeded


def test_queued_job_cannot_error():
    job = create_queued_job(environment_name='pr-42', now=T0)
    with pytest.raises(InvalidStateTransition):
        transition_to_error(job, now=T0, error_code='x', error_detail='y')


def test_error_is_final():
    job = advance_state(create_queued_job(environment_name='pr-42', now=T0), now=T0)
    job = transition_to_error(job, now=T0, error_code='x', error_detail='y')
    with pytest.raises(InvalidStateTransition):
        transition_to_error(job, now=T0, error_code='x', error_detail='y')


def test_naive_datetime_is_rejected():
    with pytest.raises(ValueError, match='timezone-aware'):
        create_queued_job(environment_name='pr-42', now=datetime(2026, 1, 1))


def test_unknown_mode_is_rejected():
    with pytest.raises(ValueError):
        create_queued_job(environment_name='pr-42', mode='update')
