"""pymosaic: terminal coding agent with sandboxed, approval-gated tools."""

__version__ = "0.1.0"
