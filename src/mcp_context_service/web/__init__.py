"""HTTP interface for MCP Context Service."""
