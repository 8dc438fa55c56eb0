"""
Shared helpers for the Supabase REST clients.
"""

from typing import Dict

import httpx

from publisher.app.config import Settings


def supabase_headers(settings: Settings) -> Dict[str, str]:
    key = settings.supabase_service_key.get_secret_value()
    return {
        "apikey": key,
        "Authorization": f"Bearer {key}",
    }


def error_message(response: httpx.Response) -> str:
    """
    Best-effort human-readable message from a Supabase error response.

    Storage returns ``{"error", "message"}``; PostgREST returns
    ``{"code", "message", "details", "hint"}``.
    """
    try:
        body = response.json()
    except ValueError:
        body = None

    if isinstance(body, dict):
        message = body.get("message") or body.get("error")
        if message:
            return str(message)

    text = response.text.strip()
    return text or f"HTTP {response.status_code}"


def build_client(settings: Settings) -> httpx.AsyncClient:
    """
    Persistent HTTP client for Supabase Storage and PostgREST.
    """
    return httpx.AsyncClient(
        base_url=settings.supabase_base_url,
        timeout=httpx.Timeout(
            timeout=settings.http_timeout_seconds,
            connect=10.0,
        ),
        limits=httpx.Limits(
            max_keepalive_connections=10,
            max_connections=20,
        ),
        headers={"User-Agent": "begleitschein-publisher"},
    )
