from graphgate.mcp.server import (
    mcp,
    mcp_stream_app,
    tool_inventory_status,
    registered_tool_names,
    MCPRouteNormalizerASGI,
)

__all__ = [
    "mcp",
    "mcp_stream_app",
    "tool_inventory_status",
    "registered_tool_names",
    "MCPRouteNormalizerASGI",
]
