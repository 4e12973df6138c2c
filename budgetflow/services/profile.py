from __future__ import annotations

import logging
from typing import Any, Optional

from budgetflow.services.api_client import LedgerApiClient
from budgetflow.services.errors import InvalidResponse, ServiceNotConfigured
from budgetflow.states.context import DEFAULT_BIO, GUEST, GUEST_NAME, ProfileUpdate, UserIdentity

logger = logging.getLogger(__name__)

TG_USER_PATH = "/api/sync/tgUser"


def _initials(*names: Optional[str]) -> str:
    letters = [n.strip()[0].upper() for n in names if n and n.strip()]
    return "".join(letters[:2]) or "U"


def build_identity(host_user: dict[str, Any] | None) -> UserIdentity:
    """UserIdentity из данных хоста (Telegram WebApp user).

    Без данных хоста получаем гостя; без username — имя из first/last name.
    """
    if not host_user or not host_user.get("id"):
        return GUEST
    try:
        user_id = int(host_user["id"])
    except (TypeError, ValueError):
        logger.warning(f"[PROFILE] Invalid host user id: {host_user.get('id')!r}")
        return GUEST
    first = (host_user.get("first_name") or "").strip()
    last = (host_user.get("last_name") or "").strip()
    full_name = " ".join(p for p in (first, last) if p)
    username = (host_user.get("username") or "").strip() or full_name or GUEST_NAME
    return UserIdentity(
        id=user_id,
        display_name=full_name or username,
        username=username,
        photo_url=host_user.get("photo_url") or None,
        bio=(host_user.get("bio") or DEFAULT_BIO),
        color_scheme=host_user.get("color_scheme") or "dark",
        initials=_initials(first, last) if full_name else _initials(username),
    )


class ProfileService:
    """Позднее обогащение профиля (фото и bio) из бэкенда синхронизации."""

    def __init__(self, api: LedgerApiClient):
        self._api = api

    async def fetch_profile(self, user_id: int) -> ProfileUpdate:
        if not self._api.is_configured:
            raise ServiceNotConfigured()
        data = await self._api.post(TG_USER_PATH, {"user_id": user_id})
        if not isinstance(data, dict) or not data.get("success"):
            message = data.get("message") if isinstance(data, dict) else None
            raise InvalidResponse(message or "Profile request was not successful")
        user_data = data.get("userData") or {}
        return ProfileUpdate(
            photo_url=user_data.get("photo_url") or user_data.get("photoUrl") or None,
            bio=user_data.get("bio") or None,
        )
