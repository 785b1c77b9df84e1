"""Deployment status subscription over Railway's GraphQL websocket.

Opens a ``graphql-transport-ws`` channel for a single deployment and waits
for a terminal status:

  open -> watching -> resolved_success | resolved_failure | resolved_unknown
                   \\-> timed_out (once the deadline elapses)

A single ``_SubscriptionState`` records the first terminal phase; the
deadline (``asyncio.timeout``) and the websocket (``async with``) are both
released on every exit path, so exactly one outcome is produced per call.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

import websockets

from ..models import DeploymentStatus
from . import queries
from .railway_client import RailwayGraphQLError

logger = logging.getLogger(__name__)

DEFAULT_WS_ENDPOINT = "wss://backboard.railway.app/graphql/v2"
GRAPHQL_TRANSPORT_WS = "graphql-transport-ws"

DEFAULT_TIMEOUT_SECONDS = 15 * 60
DEFAULT_CONNECT_TIMEOUT_SECONDS = 30.0

_SUBSCRIPTION_ID = "1"


class SubscriptionOutcome(Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    UNKNOWN_COMPLETED = "unknown_completed"


class SubscriptionPhase(Enum):
    OPEN = "open"
    WATCHING = "watching"
    RESOLVED_SUCCESS = "resolved_success"
    RESOLVED_FAILURE = "resolved_failure"
    RESOLVED_UNKNOWN = "resolved_unknown"
    TIMED_OUT = "timed_out"


TERMINAL_PHASES = frozenset(
    {
        SubscriptionPhase.RESOLVED_SUCCESS,
        SubscriptionPhase.RESOLVED_FAILURE,
        SubscriptionPhase.RESOLVED_UNKNOWN,
        SubscriptionPhase.TIMED_OUT,
    }
)

_OUTCOME_BY_PHASE = {
    SubscriptionPhase.RESOLVED_SUCCESS: SubscriptionOutcome.SUCCEEDED,
    SubscriptionPhase.RESOLVED_FAILURE: SubscriptionOutcome.FAILED,
    SubscriptionPhase.RESOLVED_UNKNOWN: SubscriptionOutcome.UNKNOWN_COMPLETED,
}


@dataclass(frozen=True, slots=True)
class SubscriptionResult:
    """Terminal outcome of one deployment subscription."""

    deployment_id: str
    outcome: SubscriptionOutcome
    status: DeploymentStatus | None = None

    @property
    def succeeded(self) -> bool:
        return self.outcome is SubscriptionOutcome.SUCCEEDED

    @property
    def failed(self) -> bool:
        return self.outcome is SubscriptionOutcome.FAILED


class DeploymentTimeoutError(Exception):
    """No terminal status was observed before the deadline."""

    def __init__(
        self,
        deployment_id: str,
        timeout_seconds: float,
        last_status: DeploymentStatus | None = None,
    ) -> None:
        self.deployment_id = deployment_id
        self.timeout_seconds = timeout_seconds
        self.last_status = last_status
        super().__init__(
            f"deployment {deployment_id} did not finish within {timeout_seconds:g}s"
            + (f" (last status {last_status.value})" if last_status else "")
        )


class SubscriptionProtocolError(Exception):
    """The server violated the graphql-transport-ws handshake."""


class InvalidSubscriptionTransition(RuntimeError):
    def __init__(self, from_phase: SubscriptionPhase, to_phase: SubscriptionPhase) -> None:
        self.from_phase = from_phase
        self.to_phase = to_phase
        super().__init__(
            f"invalid subscription transition: {from_phase.value!r} -> {to_phase.value!r}"
        )


class _SubscriptionState:
    """Mutable phase of one subscription; terminal phases are final."""

    __slots__ = ("deployment_id", "phase", "last_status")

    def __init__(self, deployment_id: str) -> None:
        self.deployment_id = deployment_id
        self.phase = SubscriptionPhase.OPEN
        self.last_status: DeploymentStatus | None = None

    @property
    def resolved(self) -> bool:
        return self.phase in TERMINAL_PHASES

    def watch(self) -> None:
        if self.phase is not SubscriptionPhase.OPEN:
            raise InvalidSubscriptionTransition(self.phase, SubscriptionPhase.WATCHING)
        self.phase = SubscriptionPhase.WATCHING

    def resolve(self, phase: SubscriptionPhase) -> None:
        if phase not in TERMINAL_PHASES or self.resolved:
            raise InvalidSubscriptionTransition(self.phase, phase)
        self.phase = phase

    def result(self) -> SubscriptionResult:
        return SubscriptionResult(
            deployment_id=self.deployment_id,
            outcome=_OUTCOME_BY_PHASE[self.phase],
            status=self.last_status,
        )


class DeploymentSubscriber:
    """Waits for a Railway deployment to reach a terminal status."""

    def __init__(
        self,
        *,
        token: str,
        endpoint: str = DEFAULT_WS_ENDPOINT,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        connect_timeout_seconds: float = DEFAULT_CONNECT_TIMEOUT_SECONDS,
        connect: Callable[..., Any] | None = None,
    ) -> None:
        if not token:
            raise ValueError("token is required")
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")

        self._token = token
        self._endpoint = endpoint
        self._timeout = float(timeout_seconds)
        self._connect_timeout = float(connect_timeout_seconds)
        self._connect = connect or websockets.connect

    @property
    def timeout_seconds(self) -> float:
        return self._timeout

    async def wait_for_completion(self, deployment_id: str) -> SubscriptionResult:
        """Watch ``deployment_id`` until it resolves or the deadline elapses.

        Raises:
            DeploymentTimeoutError: No terminal status within the deadline.
            RailwayGraphQLError: The server rejected the subscription.
            websockets.ConnectionClosedError: The channel dropped abnormally.
            TimeoutError: Opening the channel timed out before the deadline.
        """
        state = _SubscriptionState(deployment_id)
        try:
            async with asyncio.timeout(self._timeout) as deadline:
                async with self._connect(
                    self._endpoint,
                    subprotocols=[GRAPHQL_TRANSPORT_WS],
                    additional_headers={"Authorization": f"Bearer {self._token}"},
                    open_timeout=self._connect_timeout,
                ) as ws:
                    await self._handshake(ws)
                    await ws.send(json.dumps({
                        "id": _SUBSCRIPTION_ID,
                        "type": "subscribe",
                        "payload": {
                            "query": queries.DEPLOYMENT_STATUS_SUBSCRIPTION,
                            "variables": {"id": deployment_id},
                        },
                    }))
                    state.watch()
                    await self._watch(ws, state)
                    if state.phase is not SubscriptionPhase.RESOLVED_UNKNOWN:
                        await self._complete(ws, state)
        except TimeoutError:
            if state.resolved:
                # Resolved just before the deadline hit the channel teardown.
                return state.result()
            if not deadline.expired():
                # Connect/handshake timeout, not the deployment deadline.
                raise
            state.resolve(SubscriptionPhase.TIMED_OUT)
            logger.warning(
                "Deployment %s timed out after %.0fs",
                deployment_id,
                self._timeout,
                extra={"deployment_id": deployment_id},
            )
            raise DeploymentTimeoutError(
                deployment_id, self._timeout, state.last_status,
            ) from None

        return state.result()

    async def _complete(self, ws: Any, state: _SubscriptionState) -> None:
        """Stop the subscription; the outcome is already recorded."""
        try:
            await ws.send(json.dumps({"id": _SUBSCRIPTION_ID, "type": "complete"}))
        except websockets.ConnectionClosed:
            logger.debug(
                "Channel for deployment %s closed before complete was sent",
                state.deployment_id,
                extra={"deployment_id": state.deployment_id},
            )

    async def _handshake(self, ws: Any) -> None:
        await ws.send(json.dumps({
            "type": "connection_init",
            "payload": {"Authorization": f"Bearer {self._token}"},
        }))
        while True:
            message = _decode(await ws.recv())
            kind = message.get("type")
            if kind == "connection_ack":
                return
            if kind == "ping":
                await ws.send(json.dumps({"type": "pong"}))
                continue
            raise SubscriptionProtocolError(
                f"expected connection_ack, got {kind!r}"
            )

    async def _watch(self, ws: Any, state: _SubscriptionState) -> None:
        """Consume messages until a terminal phase is reached."""
        try:
            async for raw in ws:
                message = _decode(raw)
                kind = message.get("type")

                if kind == "ping":
                    await ws.send(json.dumps({"type": "pong"}))
                    continue
                if kind == "error":
                    raise RailwayGraphQLError(
                        list(message.get("payload") or []),
                        operation="deployment",
                    )
                if kind == "complete":
                    break
                if kind != "next":
                    continue

                payload = message.get("payload") or {}
                if payload.get("errors"):
                    raise RailwayGraphQLError(
                        list(payload["errors"]), operation="deployment",
                    )
                deployment = (payload.get("data") or {}).get("deployment") or {}
                status = DeploymentStatus.parse(deployment.get("status"))
                state.last_status = status

                if status is DeploymentStatus.SUCCESS:
                    state.resolve(SubscriptionPhase.RESOLVED_SUCCESS)
                    logger.info(
                        "Deployment %s succeeded",
                        state.deployment_id,
                        extra={"deployment_id": state.deployment_id},
                    )
                    return
                if status.is_failure:
                    state.resolve(SubscriptionPhase.RESOLVED_FAILURE)
                    logger.error(
                        "Deployment %s finished with status %s",
                        state.deployment_id,
                        status.value,
                        extra={"deployment_id": state.deployment_id, "status": status.value},
                    )
                    return

                logger.info(
                    "Deployment %s status: %s",
                    state.deployment_id,
                    status.value,
                    extra={"deployment_id": state.deployment_id, "status": status.value},
                )
        except websockets.ConnectionClosedOK:
            pass

        state.resolve(SubscriptionPhase.RESOLVED_UNKNOWN)
        logger.info(
            "Deployment %s subscription completed without a terminal status",
            state.deployment_id,
            extra={"deployment_id": state.deployment_id},
        )


def _decode(raw: str | bytes) -> dict[str, Any]:
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")
    message = json.loads(raw)
    if not isinstance(message, dict):
        raise SubscriptionProtocolError(f"unexpected frame: {raw[:100]!r}")
    return message
