"""MCP server exposing TDD assistant tools over stdio."""

from __future__ import annotations

from tdd_flow.server import main


if __name__ == "__main__":
    main()
