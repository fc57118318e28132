import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str
    tenant_database_url: str
    encryption_key: str
    cron_secret: str

    tenant_config_ttl_seconds: int
    tenant_engine_ttl_seconds: int
    webhook_timeout_seconds: int

    storage_backend: str
    storage_local_root: str
    s3_endpoint: str
    s3_region: str
    s3_bucket: str
    s3_access_key_id: str
    s3_secret_access_key: str


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getenv_int(name: str, default: int) -> int:
    raw = _getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def load_settings() -> Settings:
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development"),
        database_url=_getenv("DATABASE_URL", "sqlite:///crm_app.db"),
        tenant_database_url=_getenv("TENANT_DATABASE_URL", "sqlite:///crm_tenant.db"),
        encryption_key=_getenv("ENCRYPTION_KEY", ""),
        cron_secret=_getenv("CRON_SECRET", ""),
        tenant_config_ttl_seconds=_getenv_int("TENANT_CONFIG_TTL_SECONDS", 300),
        tenant_engine_ttl_seconds=_getenv_int("TENANT_ENGINE_TTL_SECONDS", 3600),
        webhook_timeout_seconds=_getenv_int("WEBHOOK_TIMEOUT_SECONDS", 10),
        storage_backend=_getenv("STORAGE_BACKEND", "local"),
        storage_local_root=_getenv("STORAGE_LOCAL_ROOT", ""),
        s3_endpoint=_getenv("S3_ENDPOINT", ""),
        s3_region=_getenv("S3_REGION", "nyc3"),
        s3_bucket=_getenv("S3_BUCKET", ""),
        s3_access_key_id=_getenv("S3_ACCESS_KEY_ID", ""),
        s3_secret_access_key=_getenv("S3_SECRET_ACCESS_KEY", ""),
    )


def load_config() -> dict:
    s = load_settings()
    is_production = s.env in ("prod", "production")
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "TENANT_DATABASE_URL": s.tenant_database_url,
        "ENCRYPTION_KEY": s.encryption_key,
        "CRON_SECRET": s.cron_secret,
        "TENANT_CONFIG_TTL_SECONDS": s.tenant_config_ttl_seconds,
        "TENANT_ENGINE_TTL_SECONDS": s.tenant_engine_ttl_seconds,
        "WEBHOOK_TIMEOUT_SECONDS": s.webhook_timeout_seconds,
        "STORAGE_BACKEND": s.storage_backend,
        "STORAGE_LOCAL_ROOT": s.storage_local_root,
        "S3_ENDPOINT": s.s3_endpoint,
        "S3_REGION": s.s3_region,
        "S3_BUCKET": s.s3_bucket,
        "S3_ACCESS_KEY_ID": s.s3_access_key_id,
        "S3_SECRET_ACCESS_KEY": s.s3_secret_access_key,
        # security defaults
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Lax",
        "SESSION_COOKIE_SECURE": is_production,
        # attachments are capped per file in the upload handler
        "MAX_CONTENT_LENGTH": 25 * 1024 * 1024,
    }
