"""Command-line entry point: input merging, exit codes, outputs."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from preview_envs import cli
from preview_envs.provisioning.orchestrator import RolloutResult
from preview_envs.provisioning.state_machine import (
    advance_state,
    create_queued_job,
    transition_to_error,
)

INPUT_NAMES = (
    'MODE', 'RAILWAY_API_TOKEN', 'PROJECT_ID', 'DEST_ENV_NAME', 'SRC_ENVIRONMENT_NAME',
    'SRC_ENVIRONMENT_ID', 'BRANCH_NAME', 'ENV_VARS', 'API_SERVICE_NAME',
    'DEPLOYMENT_ORDER', 'IGNORE_SERVICE_REDEPLOY', 'MAX_TIMEOUT', 'GITHUB_OUTPUT',
)

T0 = datetime(2026, 1, 1, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def _no_logging_setup(monkeypatch):
    monkeypatch.setattr(cli, 'configure_logging', lambda **kwargs: None)


@pytest.fixture
def clean_env(monkeypatch):
    for name in INPUT_NAMES:
        monkeypatch.delenv(name, raising=False)
        monkeypatch.delenv(f'INPUT_{name}', raising=False)
    return monkeypatch


@pytest.fixture
def valid_env(clean_env):
    clean_env.setenv('RAILWAY_API_TOKEN', 'rw-secret')
    clean_env.setenv('PROJECT_ID', 'proj_1')
    clean_env.setenv('DEST_ENV_NAME', 'pr-42')
    clean_env.setenv('SRC_ENVIRONMENT_NAME', 'staging')
    return clean_env


def _succeeded() -> RolloutResult:
    job = create_queued_job(environment_name='pr-42', now=T0)
    while not job.is_terminal:
        job = advance_state(job, now=T0)
    return RolloutResult(
        job=job,
        success=True,
        environment_id='env_new',
        service_domain='web-pr-42.up.railway.app',
        deployed=('web',),
    )


def _failed() -> RolloutResult:
    job = advance_state(create_queued_job(environment_name='pr-42', now=T0), now=T0)
    job = transition_to_error(job, now=T0, error_code='environment_exists', error_detail='exists')
    return RolloutResult(
        job=job, success=False, error_code='environment_exists', error_detail='exists',
    )


def test_flags_override_environment(valid_env):
    args = cli.build_parser().parse_args([
        '--mode', 'DESTROY', '--dest-env-name', 'pr-7', '--deployment-order', 'web,worker',
        '--max-timeout', '60',
    ])

    settings = cli.settings_from_args(args, {
        'DEST_ENV_NAME': 'pr-42', 'PROJECT_ID': 'proj_1', 'MAX_TIMEOUT': '900',
    })

    assert settings.mode == 'destroy'
    assert settings.dest_env_name == 'pr-7'
    assert settings.project_id == 'proj_1'
    assert settings.deployment_order == ('web', 'worker')
    assert settings.deployment_max_timeout == 60.0


def test_invalid_configuration_exits_one(clean_env, capsys):
    assert cli.main(['--log-format', 'json']) == 1
    out = capsys.readouterr().out
    assert '::error::' in out
    assert 'project_id is required' in out


def test_malformed_input_exits_one(valid_env, capsys):
    valid_env.setenv('ENV_VARS', '[1, 2]')
    assert cli.main([]) == 1
    assert 'ENV_VARS must be a JSON object' in capsys.readouterr().out


def test_success_writes_outputs(valid_env, tmp_path, monkeypatch):
    out = tmp_path / 'github_output'
    valid_env.setenv('GITHUB_OUTPUT', str(out))

    async def fake_run(settings):
        assert settings.dest_env_name == 'pr-42'
        return _succeeded()

    monkeypatch.setattr(cli, 'run_operation', fake_run)

    assert cli.main([]) == 0
    assert out.read_text().splitlines() == [
        'environment_id=env_new',
        'service_domain=web-pr-42.up.railway.app',
    ]


def test_failure_reports_code_and_exits_one(valid_env, monkeypatch, capsys):
    async def fake_run(settings):
        return _failed()

    monkeypatch.setattr(cli, 'run_operation', fake_run)

    assert cli.main([]) == 1
    assert '::error::Environment creation failed [environment_exists]: exists' in (
        capsys.readouterr().out
    )
