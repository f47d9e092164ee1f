from .gateway import (
    AIGatewayClient,
    GatewayCreditsError,
    GatewayError,
    GatewayNotConfiguredError,
    GatewayRateLimitError,
    ToolArgumentsError,
    function_tool,
    scavenge_json,
)

__all__ = [
    "AIGatewayClient",
    "GatewayCreditsError",
    "GatewayError",
    "GatewayNotConfiguredError",
    "GatewayRateLimitError",
    "ToolArgumentsError",
    "function_tool",
    "scavenge_json",
]
