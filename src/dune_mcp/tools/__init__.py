# Dune Query MCP Server
# File: tools/__init__.py
# Version: v1

"""MCP tools for the Dune Query MCP server (see ``tasks.register_tools``)."""

from __future__ import annotations

__all__ = ["tasks"]
