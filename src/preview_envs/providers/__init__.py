"""Railway API providers: request dispatcher and deployment subscriber."""

from .deployment_subscriber import (
    DeploymentSubscriber,
    DeploymentTimeoutError,
    SubscriptionOutcome,
    SubscriptionResult,
)
from .railway_client import (
    RailwayAPIError,
    RailwayClient,
    RailwayGatewayTimeoutError,
    RailwayGraphQLError,
    RailwayTimeoutError,
)

__all__ = [
    "DeploymentSubscriber",
    "DeploymentTimeoutError",
    "RailwayAPIError",
    "RailwayClient",
    "RailwayGatewayTimeoutError",
    "RailwayGraphQLError",
    "RailwayTimeoutError",
    "SubscriptionOutcome",
    "SubscriptionResult",
]
