"""Command-line entry point: create or destroy one preview environment.

Usage::

    # Inputs from the environment (GitHub Actions sets INPUT_<NAME>):
    preview-envs

    # Explicit flags override environment inputs:
    preview-envs --mode create --dest-env-name pr-42 --project-id <id> \\
        --src-environment-name staging --branch-name feature/login \\
        --deployment-order '["web", "worker"]' --ignore-services migrate

Exit codes:
  0: Operation succeeded.
  1: Configuration invalid or operation failed.
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import os
import sys
from typing import Sequence

from .errors import ConfigurationError
from .observability.logging import bind_operation, configure_logging, get_logger
from .providers.deployment_subscriber import DeploymentSubscriber
from .providers.railway_client import RailwayClient
from .provisioning.orchestrator import RolloutOrchestrator, RolloutResult
from .reporting import report_failure, write_outputs
from .settings import (
    RolloutSettings,
    parse_env_vars,
    parse_name_list,
    parse_seconds,
)

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='preview-envs',
        description='Create or destroy an ephemeral Railway environment.',
    )
    parser.add_argument('--mode', choices=('create', 'destroy'), type=str.lower)
    parser.add_argument('--dest-env-name')
    parser.add_argument('--project-id')
    parser.add_argument('--src-environment-name')
    parser.add_argument('--src-environment-id')
    parser.add_argument('--branch-name')
    parser.add_argument('--env-vars', help='JSON object of variables to set on every service')
    parser.add_argument('--api-service-name')
    parser.add_argument('--deployment-order', help='JSON array or comma list of service names')
    parser.add_argument('--ignore-services', help='JSON array or comma list of service names')
    parser.add_argument('--max-timeout', help='seconds to wait for each ordered deployment')
    parser.add_argument('--log-level')
    parser.add_argument('--log-format', choices=('json', 'console'))
    return parser


def settings_from_args(
    args: argparse.Namespace,
    env: dict[str, str] | None = None,
) -> RolloutSettings:
    """Environment inputs, overridden by any flag given on the command line."""
    settings = RolloutSettings.from_env(env)
    overrides: dict[str, object] = {}
    for field in (
        'mode', 'dest_env_name', 'project_id', 'src_environment_name',
        'src_environment_id', 'branch_name', 'api_service_name',
    ):
        value = getattr(args, field)
        if value:
            overrides[field] = value
    if args.env_vars:
        overrides['env_vars'] = parse_env_vars(args.env_vars)
    if args.deployment_order:
        overrides['deployment_order'] = parse_name_list(args.deployment_order, '--deployment-order')
    if args.ignore_services:
        overrides['ignore_services'] = parse_name_list(args.ignore_services, '--ignore-services')
    if args.max_timeout:
        overrides['deployment_max_timeout'] = parse_seconds(args.max_timeout, '--max-timeout')
    return dataclasses.replace(settings, **overrides)


async def run_operation(settings: RolloutSettings) -> RolloutResult:
    client = RailwayClient(token=settings.railway_api_token, endpoint=settings.endpoint)
    subscriber = DeploymentSubscriber(
        token=settings.railway_api_token,
        endpoint=settings.ws_endpoint,
        timeout_seconds=settings.deployment_max_timeout,
    )
    orchestrator = RolloutOrchestrator(settings, client=client, subscriber=subscriber)
    return await orchestrator.run()


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(
        level=args.log_level,
        json_output=(args.log_format == 'json') if args.log_format else None,
    )

    try:
        settings = settings_from_args(args, dict(os.environ))
    except ConfigurationError as exc:
        report_failure(str(exc))
        return 1

    errors = settings.validate()
    if errors:
        for error in errors:
            logger.error('invalid_configuration', error=error)
        report_failure('; '.join(errors))
        return 1

    with bind_operation(environment_name=settings.dest_env_name, mode=settings.mode):
        result = asyncio.run(run_operation(settings))

        if not result.success:
            action = 'creation' if settings.is_create else 'destruction'
            report_failure(
                f'Environment {action} failed [{result.error_code}]: {result.error_detail}'
            )
            return 1

        write_outputs({
            'environment_id': result.environment_id,
            'service_domain': result.service_domain,
        })
        logger.info(
            'operation_succeeded',
            environment_id=result.environment_id,
            deployed=list(result.deployed),
            fanout_failures=len(result.fanout_failures),
        )
    return 0


if __name__ == '__main__':
    sys.exit(main())
