"""
Tenant routing: app DB (identity, tenants) vs. per-tenant data DB (business records).

A tenant row in the app DB says where its business data lives (an encrypted
connection URL; empty means the shared TENANT_DATABASE_URL) and which tenant id
that data source knows it by. DataSourceManager resolves that once, caches the
config for a few minutes and the engine for an hour, and hands out sessions whose
`info["tenant_id"]` carries the data-source tenant id. Services read it from there
so every write is stamped and every read is filtered without threading the id
through each call.
"""
from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from collections.abc import Generator
from dataclasses import dataclass, field
from typing import Any

from cryptography.fernet import Fernet, InvalidToken
from flask import Flask, current_app, g
from sqlalchemy import select
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import ArgumentError
from sqlalchemy.orm import Session, sessionmaker

from app.crm.db import build_engine, build_sessionmaker
from app.crm.models import Tenant, User

logger = logging.getLogger(__name__)


class TenantResolutionError(RuntimeError):
    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


# ---------- Secrets ----------


def encrypt_secret(value: str, key: str | None) -> str:
    """Encrypt a connection secret. Without a key the value is stored as-is (development only)."""
    if not key:
        return value
    return Fernet(key.encode("utf-8")).encrypt(value.encode("utf-8")).decode("ascii")


def decrypt_secret(value: str, key: str | None) -> str:
    if not key:
        return value
    try:
        return Fernet(key.encode("utf-8")).decrypt(value.encode("ascii")).decode("utf-8")
    except (InvalidToken, ValueError) as e:
        raise TenantResolutionError("Tenant data source credentials could not be decrypted.", 500) from e


# ---------- Connection config + caches ----------


@dataclass(frozen=True)
class TenantConnectionConfig:
    tenant_id: str
    data_source_tenant_id: str
    database_url: str
    region: str | None
    pool_min: int
    pool_max: int
    uses_default: bool


@dataclass
class _CacheEntry:
    value: Any
    created_at: float = field(default_factory=time.monotonic)

    def age(self) -> float:
        return time.monotonic() - self.created_at


class DataSourceManager:
    def __init__(
        self,
        app_sessionmaker: sessionmaker,
        *,
        default_url: str,
        encryption_key: str | None = None,
        config_ttl: int = 300,
        engine_ttl: int = 3600,
        env: str | None = None,
    ):
        self._app_sessionmaker = app_sessionmaker
        self.default_url = default_url
        self.encryption_key = encryption_key or None
        self.config_ttl = config_ttl
        self.engine_ttl = engine_ttl
        self.env = env
        self._configs: dict[str, _CacheEntry] = {}
        self._engines: dict[str, _CacheEntry] = {}  # keyed by connection URL
        self._lock = threading.Lock()

    def get_connection_config(self, tenant_id: str) -> TenantConnectionConfig:
        with self._lock:
            entry = self._configs.get(tenant_id)
            if entry and entry.age() < self.config_ttl:
                return entry.value

        with self._app_sessionmaker() as s:
            tenant = s.get(Tenant, tenant_id)
            if tenant is None:
                raise TenantResolutionError(f"Tenant not found: {tenant_id}", 400)
            if (tenant.status or "active") != "active":
                raise TenantResolutionError(f"Tenant is not active: {tenant_id}", 403)
            url = decrypt_secret(tenant.data_source_url, self.encryption_key) if tenant.data_source_url else ""
            cfg = TenantConnectionConfig(
                tenant_id=tenant.id,
                data_source_tenant_id=tenant.tenant_id_in_data_source or tenant.id,
                database_url=url or self.default_url,
                region=tenant.data_source_region,
                pool_min=tenant.connection_pool_min or 1,
                pool_max=tenant.connection_pool_max or 5,
                uses_default=not url,
            )

        with self._lock:
            self._configs[tenant_id] = _CacheEntry(cfg)
        logger.debug("Cached connection config for tenant %s (default=%s)", tenant_id, cfg.uses_default)
        return cfg

    def get_data_source_tenant_id(self, tenant_id: str) -> str:
        return self.get_connection_config(tenant_id).data_source_tenant_id

    def _get_engine_entry(self, cfg: TenantConnectionConfig) -> _CacheEntry:
        with self._lock:
            entry = self._engines.get(cfg.database_url)
            if entry and entry.age() < self.engine_ttl:
                return entry
            if entry:
                entry.value[0].dispose()
                logger.info("Tenant engine expired; rebuilding (tenant=%s)", cfg.tenant_id)
            try:
                engine = build_engine(
                    cfg.database_url,
                    env=self.env,
                    pool_size=cfg.pool_min,
                    max_overflow=max(cfg.pool_max - cfg.pool_min, 0),
                )
            except ArgumentError as e:
                raise TenantResolutionError(f"Invalid data source URL for tenant {cfg.tenant_id}", 500) from e
            entry = _CacheEntry((engine, build_sessionmaker(engine)))
            self._engines[cfg.database_url] = entry
            return entry

    def get_engine(self, tenant_id: str) -> Engine:
        cfg = self.get_connection_config(tenant_id)
        return self._get_engine_entry(cfg).value[0]

    def get_sessionmaker(self, tenant_id: str) -> sessionmaker:
        cfg = self.get_connection_config(tenant_id)
        return self._get_engine_entry(cfg).value[1]

    def open_session(self, tenant_id: str) -> Session:
        cfg = self.get_connection_config(tenant_id)
        s: Session = self.get_sessionmaker(tenant_id)()
        s.info["tenant_id"] = cfg.data_source_tenant_id
        s.info["app_tenant_id"] = cfg.tenant_id
        return s

    def clear_tenant_cache(self, tenant_id: str) -> None:
        with self._lock:
            entry = self._configs.pop(tenant_id, None)
            if entry is None:
                return
            url = entry.value.database_url
            still_used = any(e.value.database_url == url for e in self._configs.values())
            if not still_used:
                engine_entry = self._engines.pop(url, None)
                if engine_entry:
                    engine_entry.value[0].dispose()
        logger.info("Cleared data source cache for tenant %s", tenant_id)

    def clear_all_caches(self) -> None:
        with self._lock:
            for entry in self._engines.values():
                entry.value[0].dispose()
            self._engines.clear()
            self._configs.clear()
        logger.info("Cleared all tenant data source caches")

    def dispose_all(self) -> None:
        with self._lock:
            for entry in self._engines.values():
                entry.value[0].dispose()

    def get_cache_stats(self) -> dict:
        with self._lock:
            return {
                "config_cache_size": len(self._configs),
                "engine_cache_size": len(self._engines),
                "config_ttl_seconds": self.config_ttl,
                "engine_ttl_seconds": self.engine_ttl,
                "tenants": sorted(self._configs.keys()),
                "config_ages_seconds": {k: round(v.age(), 1) for k, v in self._configs.items()},
            }

    def test_connection(self, tenant_id: str) -> dict:
        from app.crm.modules.accounts.models import Account

        started = time.monotonic()
        try:
            cfg = self.get_connection_config(tenant_id)
            with self.open_session(tenant_id) as s:
                s.execute(select(Account.id).where(Account.tenant_id == cfg.data_source_tenant_id).limit(1)).all()
            return {
                "success": True,
                "response_time_ms": int((time.monotonic() - started) * 1000),
                "diagnostics": {
                    "tenant_id": tenant_id,
                    "data_source_tenant_id": cfg.data_source_tenant_id,
                    "uses_default_data_source": cfg.uses_default,
                },
            }
        except Exception as e:
            logger.warning("Tenant connection test failed (tenant=%s): %s", tenant_id, e)
            return {
                "success": False,
                "response_time_ms": int((time.monotonic() - started) * 1000),
                "error": str(e),
                "diagnostics": {"tenant_id": tenant_id},
            }

    def get_connection_info(self, tenant_id: str) -> dict:
        cfg = self.get_connection_config(tenant_id)
        url = make_url(cfg.database_url)
        with self._lock:
            cached = cfg.database_url in self._engines
        return {
            "tenant_id": cfg.tenant_id,
            "data_source_tenant_id": cfg.data_source_tenant_id,
            "driver": url.drivername,
            "host": url.host,
            "database": url.database,
            "region": cfg.region,
            "uses_default_data_source": cfg.uses_default,
            "pool": {"min": cfg.pool_min, "max": cfg.pool_max},
            "engine_cached": cached,
        }


def init_tenancy(app: Flask) -> DataSourceManager:
    manager = DataSourceManager(
        app.extensions["sqlalchemy_sessionmaker"],
        default_url=app.config["TENANT_DATABASE_URL"],
        encryption_key=app.config.get("ENCRYPTION_KEY"),
        config_ttl=int(app.config.get("TENANT_CONFIG_TTL_SECONDS") or 300),
        engine_ttl=int(app.config.get("TENANT_ENGINE_TTL_SECONDS") or 3600),
        env=app.config.get("ENV"),
    )
    app.extensions["tenant_data_sources"] = manager
    return manager


def data_sources(app: Flask | None = None) -> DataSourceManager:
    return (app or current_app).extensions["tenant_data_sources"]


# ---------- Request context ----------


@dataclass
class TenantContext:
    tenant_id: str
    data_source_tenant_id: str
    session: Session
    user: User


def tenant_context() -> TenantContext:
    """
    Resolve (once per request) the tenant of the logged-in user and open its data session.
    """
    ctx: TenantContext | None = getattr(g, "tenant", None)
    if ctx is not None:
        return ctx
    user: User | None = getattr(g, "current_user", None)
    if user is None:
        raise TenantResolutionError("Authentication required.", 401)
    if not user.tenant_id:
        raise TenantResolutionError("No tenant associated with this user.", 400)
    manager = data_sources()
    try:
        s = manager.open_session(user.tenant_id)
    except TenantResolutionError:
        raise
    except Exception as e:
        current_app.logger.exception("Tenant data source init failed (tenant=%s)", user.tenant_id)
        raise TenantResolutionError("Failed to initialize tenant data source.", 500) from e
    ctx = TenantContext(
        tenant_id=user.tenant_id,
        data_source_tenant_id=s.info["tenant_id"],
        session=s,
        user=user,
    )
    g.tenant = ctx
    return ctx


def tenant_db() -> Session:
    """Request-scoped tenant data session."""
    return tenant_context().session


def current_tenant_id() -> str:
    return tenant_context().data_source_tenant_id


def tenant_id_of(s: Session) -> str:
    tid = s.info.get("tenant_id")
    if not tid:
        raise TenantResolutionError("Session is not bound to a tenant.", 500)
    return tid


def teardown_tenant_session(_exc: BaseException | None) -> None:
    ctx: TenantContext | None = getattr(g, "tenant", None)
    if ctx is not None:
        try:
            ctx.session.close()
        except Exception:
            logger.warning("Failed to close tenant session", exc_info=True)
        g.tenant = None


@contextmanager
def tenant_session_scope(app: Flask, tenant_id: str) -> Generator[Session, None, None]:
    """
    Non-request helper for scripts and cron: yields a tenant session and commits/rolls back.
    """
    s = data_sources(app).open_session(tenant_id)
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()
