from __future__ import annotations

import base64
import json
import logging
from typing import Tuple

import httpx
from postgrest.constants import DEFAULT_POSTGREST_CLIENT_TIMEOUT
from psycopg.conninfo import conninfo_to_dict

from supabase import Client, ClientOptions, create_client

from .core_config import Settings, get_settings

logger = logging.getLogger(__name__)

_HTTPX_TIMEOUT = DEFAULT_POSTGREST_CLIENT_TIMEOUT


def _build_supabase_http_client() -> httpx.Client:
    """Return an httpx client configured for Supabase REST calls."""

    timeout = httpx.Timeout(_HTTPX_TIMEOUT)
    return httpx.Client(timeout=timeout)


def _client_options() -> ClientOptions:
    """Construct ClientOptions that avoid deprecated timeout/verify kwargs."""

    options = ClientOptions()
    options.httpx_client = _build_supabase_http_client()
    return options


def get_supabase_credentials(settings: Settings | None = None) -> tuple[str, str]:
    settings = settings or get_settings()
    url = (settings.supabase_url or "").strip()
    key = (settings.supabase_service_role_key or "").strip()
    missing = [
        name
        for name, value in {
            "SUPABASE_URL": url,
            "SUPABASE_SERVICE_ROLE_KEY": key,
        }.items()
        if not value
    ]
    if missing:
        raise RuntimeError(
            "Supabase credentials missing: set " + " and ".join(missing)
        )
    return url, key


def _verify_service_role(jwt_token: str) -> None:
    try:
        segments = jwt_token.split(".")
        if len(segments) < 2:
            raise ValueError("missing JWT payload")
        payload_segment = segments[1]
        padding = "=" * (-len(payload_segment) % 4)
        decoded = base64.urlsafe_b64decode(payload_segment + padding)
        claims = json.loads(decoded)
    except Exception as exc:  # pragma: no cover
        raise RuntimeError("Invalid SUPABASE_SERVICE_ROLE_KEY JWT") from exc

    role = claims.get("role")
    if role != "service_role":
        raise RuntimeError(f"Service role key has unexpected role: {role}")


def create_supabase_client(settings: Settings | None = None) -> Client:
    settings = settings or get_settings()
    url, key = get_supabase_credentials(settings)
    _verify_service_role(key)
    options = _client_options()
    client = create_client(url, key, options=options)
    logger.info(
        "Initialized Supabase client for project '%s' (environment %s)",
        _project_ref_from_url(url),
        settings.ENVIRONMENT,
    )
    return client


def _project_ref_from_url(url: str | None) -> str:
    if not url:
        return ""
    url = url.strip()
    if not url:
        return ""
    prefix = "https://"
    if url.startswith(prefix):
        url = url[len(prefix) :]
    return url.split(".")[0]


def get_supabase_db_url(settings: Settings | None = None) -> str:
    settings = settings or get_settings()
    db_url = (settings.supabase_db_url or "").strip()
    if not db_url:
        raise RuntimeError(
            "Missing Supabase database configuration. Set SUPABASE_DB_URL "
            "(required when RATE_LIMIT_BACKEND=postgres)."
        )
    return db_url


def describe_db_url(db_url: str) -> Tuple[str, str, str]:
    host = "unknown"
    dbname = "unknown"
    user = "unknown"
    try:
        parts = conninfo_to_dict(db_url)
        host_value = parts.get("host") or parts.get("hostaddr")
        if host_value:
            host = str(host_value)
        dbname_value = parts.get("dbname")
        if dbname_value:
            dbname = str(dbname_value)
        user_value = parts.get("user")
        if user_value:
            user = str(user_value)
    except Exception:  # pragma: no cover
        logger.debug("Could not parse database URL for logging", exc_info=True)
    return host, dbname, user
