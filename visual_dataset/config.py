from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from typing import Any

from dotenv import load_dotenv


load_dotenv()

logger = logging.getLogger(__name__)

# Streamlit secrets may nest values under [supabase] / [app]; each env key maps
# to the section and the aliases accepted inside it.
SECRET_SECTIONS: dict[str, tuple[str, tuple[str, ...]]] = {
    "SUPABASE_URL": ("supabase", ("url", "supabase_url")),
    "SUPABASE_SERVICE_KEY": ("supabase", ("service_key", "service_role_key")),
    "SUPABASE_SERVICE_ROLE_KEY": ("supabase", ("service_role_key", "service_key")),
    "SUPABASE_KEY": ("supabase", ("key", "anon_key", "supabase_key")),
    "SUPABASE_ANON_KEY": ("supabase", ("anon_key", "key")),
    "SUPABASE_STORAGE_BUCKET": ("supabase", ("bucket", "storage_bucket")),
    "REVIEWER_IDENTITY": ("app", ("reviewer", "reviewer_identity")),
    "COVERAGE_TARGET": ("app", ("coverage_target", "target")),
    "WIZARD_RESET_DELAY_SECONDS": ("app", ("reset_delay_seconds",)),
    "MAX_IMAGE_MB": ("app", ("max_image_mb",)),
    "ORPHAN_GRACE_SECONDS": ("app", ("orphan_grace_seconds",)),
}


def _clean(value: Any) -> str:
    return "" if value is None else str(value).strip()


def _from_streamlit_secrets(key: str) -> str:
    try:
        import streamlit as st
    except ImportError:
        return ""

    try:
        for candidate in (key, key.lower()):
            value = _clean(st.secrets.get(candidate))
            if value:
                return value
        section, aliases = SECRET_SECTIONS.get(key, ("", ()))
        nested = st.secrets.get(section) if section else None
    except Exception:
        # No secrets.toml present.
        return ""

    if not hasattr(nested, "items"):
        return ""
    lowered = {str(k).lower(): _clean(v) for k, v in nested.items()}
    for alias in aliases:
        if lowered.get(alias):
            return lowered[alias]
    return ""


def _get_config_value(*keys: str, default: str = "") -> str:
    for key in keys:
        value = os.getenv(key, "").strip() or _from_streamlit_secrets(key)
        if value:
            return value
    return default


def _number(key: str, default: float, cast=float):
    raw = _get_config_value(key)
    if not raw:
        return cast(default)
    try:
        return cast(raw)
    except ValueError:
        logger.warning("config.invalid_number key=%s value=%r default=%s", key, raw, default)
        return cast(default)


@dataclass(frozen=True)
class Settings:
    app_env: str
    supabase_url: str
    supabase_key: str
    storage_bucket: str
    reviewer_identity: str
    coverage_target: int
    reset_delay_seconds: float
    max_image_bytes: int
    log_level: str
    orphan_grace_seconds: float

    def supabase_url_valid(self) -> bool:
        # Project URL, not a postgres DSN.
        return bool(re.match(r"^https://[a-z0-9-]+\.supabase\.co$", self.supabase_url))

    def supabase_key_present(self) -> bool:
        return bool(self.supabase_key)


def load_settings() -> Settings:
    return Settings(
        app_env=_get_config_value("APP_ENV", default="dev"),
        supabase_url=_get_config_value("SUPABASE_URL").rstrip("/"),
        # Service role key first so uploads bypass RLS when it is configured.
        supabase_key=_get_config_value(
            "SUPABASE_SERVICE_KEY",
            "SUPABASE_SERVICE_ROLE_KEY",
            "SUPABASE_KEY",
            "SUPABASE_ANON_KEY",
        ),
        storage_bucket=_get_config_value("SUPABASE_STORAGE_BUCKET", default="submission-images"),
        reviewer_identity=_get_config_value("REVIEWER_IDENTITY", default="admin"),
        coverage_target=_number("COVERAGE_TARGET", 1000, int),
        reset_delay_seconds=_number("WIZARD_RESET_DELAY_SECONDS", 3.0),
        max_image_bytes=int(_number("MAX_IMAGE_MB", 10.0) * 1024 * 1024),
        log_level=_get_config_value("LOG_LEVEL", default="INFO").upper(),
        orphan_grace_seconds=_number("ORPHAN_GRACE_SECONDS", 3600.0),
    )


settings = load_settings()
