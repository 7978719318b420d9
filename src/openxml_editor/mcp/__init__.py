"""MCP stdio server exposing the archive engine as tools."""
