"""
FastAPI dependencies (shared across routes).
"""

from __future__ import annotations

import hmac
from typing import Optional

from fastapi import Header, Request

from config.settings import config
from core.services import Services


def get_services(request: Request) -> Services:
    """The service container attached to the app at start-up."""
    return request.app.state.services


def cron_authorized(authorization: Optional[str] = Header(default=None, alias="Authorization")) -> bool:
    """
    True when the request carries ``Authorization: Bearer <cron secret>``.

    An unset secret authorizes nobody.
    """
    if not config.cron_secret or not authorization:
        return False
    return hmac.compare_digest(authorization, f"Bearer {config.cron_secret}")
