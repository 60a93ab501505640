"""GraphGate: tenant-scoped knowledge graph served over MCP."""

__version__ = "0.1.0"
