"""TaskWatch MCP: monitored recording sessions with AI-assisted task verification."""

__version__ = "0.1.0"

__all__ = ["__version__"]
