"""Shared helpers for the Help Scout MCP server."""
