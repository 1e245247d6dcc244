"""MCP stdio server exposing sync, preview, credential and scheduler tools."""
