from __future__ import annotations

import logging
from typing import Any

from visual_dataset.config import settings

logger = logging.getLogger(__name__)


def get_supabase_client(url: str | None = None, api_key: str | None = None) -> tuple[Any | None, str | None]:
    """Return ``(client, None)`` or ``(None, reason)`` when the SDK cannot be used.

    Falls back to the configured project URL and key.
    """
    url = (url if url is not None else settings.supabase_url).strip().rstrip("/")
    api_key = (api_key if api_key is not None else settings.supabase_key).strip()

    if not url or not api_key:
        return None, "SUPABASE_URL or API key missing"
    if url == settings.supabase_url and not settings.supabase_url_valid():
        return None, "SUPABASE_URL invalid (must look like https://<project-ref>.supabase.co)"

    try:
        from supabase import create_client
    except ImportError as exc:
        return None, f"Supabase client import failed: {exc}"

    try:
        return create_client(url, api_key), None
    except Exception as exc:  # pragma: no cover
        logger.warning("supabase.client_init_failed error=%s", exc)
        return None, f"Supabase init failed: {exc}"
