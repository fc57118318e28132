"""
Central constants for the CRM application: permission catalogue and role grants.
"""
from __future__ import annotations

PERMISSION_MODULES = (
    "accounts",
    "contacts",
    "leads",
    "opportunities",
    "events",
    "invoices",
    "inventory",
    "tasks",
    "tickets",
    "workflows",
    "users",
)
PERMISSION_ACTIONS = ("view", "create", "edit", "delete")
SETTINGS_PERMISSIONS = ("settings.view", "settings.edit")


def all_permission_keys() -> list[str]:
    keys = [f"{m}.{a}" for m in PERMISSION_MODULES for a in PERMISSION_ACTIONS]
    keys.extend(SETTINGS_PERMISSIONS)
    return keys


def permission_name(key: str) -> str:
    module, _, action = key.partition(".")
    return f"{module.replace('_', ' ').title()}: {action}"


def _grant(modules: tuple[str, ...], actions: tuple[str, ...]) -> set[str]:
    return {f"{m}.{a}" for m in modules for a in actions}


_CRM = ("accounts", "contacts", "leads", "opportunities")

ROLES = {
    "admin": "Administrator",
    "tenant_admin": "Tenant Administrator",
    "sales_rep": "Sales Representative",
    "operations_manager": "Operations Manager",
    "user": "User",
    "staff": "Event Staff",
}

ROLE_PERMISSIONS: dict[str, set[str]] = {
    "admin": set(all_permission_keys()),
    "tenant_admin": set(all_permission_keys()),
    "sales_rep": (
        _grant(_CRM, ("view", "create", "edit"))
        | _grant(("events", "invoices", "inventory", "users"), ("view",))
        | _grant(("invoices",), ("create",))
        | _grant(("tasks",), ("view", "create", "edit"))
        | _grant(("tickets",), ("view", "create"))
    ),
    "operations_manager": (
        _grant(_CRM, ("view",))
        | _grant(("events", "inventory", "tasks", "workflows", "tickets"), PERMISSION_ACTIONS)
        | _grant(("invoices", "users"), ("view",))
        | {"settings.view"}
    ),
    "user": (
        _grant(PERMISSION_MODULES, ("view",))
        | _grant(("tasks",), ("create", "edit"))
        | _grant(("tickets",), ("create",))
    ),
    "staff": (
        _grant(("events", "inventory", "tasks", "tickets"), ("view",))
        | {"tasks.edit", "tickets.create"}
    ),
}
