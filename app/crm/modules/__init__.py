"""
Feature modules live under this package.

Each module owns its models, service and API blueprint, and reuses the platform
primitives (auth, RBAC, audit, tenant data session, storage).
"""
