"""
Switch fleet manager.

This package provides:
- Switch REST API client (auth, system state, schema upload requests)
- In-memory device registry with per-device session tokens
- Periodic and on-demand reconciliation of switch state
- Token-gated OpenAPI schema retrieval
"""

__version__ = "0.1.0"
