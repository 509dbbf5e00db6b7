"""JSON-file persistence for digest schedules and delivered digests."""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, List, Mapping

from pydantic import ValidationError

from ..schemas.digest import Digest, DigestUserSettings

logger = logging.getLogger(__name__)

MAX_DIGESTS_PER_USER = 100


def _read_list(path: Path) -> list[Any]:
    if not path.exists():
        return []
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning("Failed to read %s: %s", path, exc)
        return []
    return raw if isinstance(raw, list) else []


def _write_list(path: Path, items: list[dict[str, Any]]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(items, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")


def _sort_key(digest: Digest) -> datetime:
    moment = digest.delivered_at or digest.generated_at
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment


class DigestStore:
    """Store user digest settings and digest history in two JSON files."""

    def __init__(
        self,
        users_path: Path,
        digests_path: Path,
        *,
        max_digests_per_user: int = MAX_DIGESTS_PER_USER,
    ) -> None:
        self._users_path = users_path
        self._digests_path = digests_path
        self._max_per_user = max_digests_per_user
        self._lock = asyncio.Lock()

    def _load_users(self) -> List[DigestUserSettings]:
        users: List[DigestUserSettings] = []
        for item in _read_list(self._users_path):
            try:
                users.append(DigestUserSettings.model_validate(item))
            except ValidationError as exc:
                logger.warning("Skipping invalid digest user entry: %s", exc)
        return users

    def _save_users(self, users: List[DigestUserSettings]) -> None:
        _write_list(
            self._users_path,
            [
                user.model_dump(mode="json", by_alias=True, exclude_none=True)
                for user in users
            ],
        )

    def _load_digests(self) -> List[Digest]:
        digests: List[Digest] = []
        for item in _read_list(self._digests_path):
            try:
                digests.append(Digest.model_validate(item))
            except ValidationError as exc:
                logger.warning("Skipping invalid digest entry: %s", exc)
        return digests

    def _save_digests(self, digests: List[Digest]) -> None:
        _write_list(
            self._digests_path,
            [digest.model_dump(mode="json", by_alias=True) for digest in digests],
        )

    async def get_all_users(self) -> List[DigestUserSettings]:
        async with self._lock:
            return self._load_users()

    async def get_user(self, user_id: str) -> DigestUserSettings | None:
        async with self._lock:
            for user in self._load_users():
                if user.user_id == user_id:
                    return user
            return None

    async def save_user_settings(
        self, user_id: str, changes: Mapping[str, Any]
    ) -> DigestUserSettings:
        """Create or merge the settings for ``user_id``."""

        async with self._lock:
            users = self._load_users()
            now = datetime.now(timezone.utc)
            for index, existing in enumerate(users):
                if existing.user_id == user_id:
                    merged = existing.model_dump()
                    merged.update(changes)
                    merged["updated_at"] = now
                    updated = DigestUserSettings.model_validate(merged)
                    users[index] = updated
                    break
            else:
                updated = DigestUserSettings.model_validate(
                    {**changes, "user_id": user_id, "created_at": now}
                )
                users.append(updated)
            self._save_users(users)
            logger.info("Digest settings saved for user %s", user_id)
            return updated

    async def get_users_for_hour(self, utc_hour: int) -> List[DigestUserSettings]:
        async with self._lock:
            return [
                user
                for user in self._load_users()
                if user.digest_enabled and user.digest_time_utc == utc_hour
            ]

    async def save_digest(self, user_id: str, digest: Digest) -> Digest:
        """Append ``digest`` to the user's history, keeping the newest entries."""

        async with self._lock:
            digests = self._load_digests()
            stored = digest.model_copy(
                update={"user_id": user_id, "delivered_at": datetime.now(timezone.utc)}
            )
            digests.append(stored)

            mine = [item for item in digests if item.user_id == user_id]
            if len(mine) > self._max_per_user:
                keep = {id(item) for item in mine[-self._max_per_user:]}
                digests = [
                    item
                    for item in digests
                    if item.user_id != user_id or id(item) in keep
                ]

            self._save_digests(digests)
            logger.info("Digest %s saved for user %s", stored.id, user_id)
            return stored

    async def get_user_digests(self, user_id: str, limit: int = 30) -> List[Digest]:
        async with self._lock:
            mine = [item for item in self._load_digests() if item.user_id == user_id]
        mine.sort(key=_sort_key, reverse=True)
        return mine[: max(0, limit)]

    async def get_digest(self, digest_id: str) -> Digest | None:
        async with self._lock:
            for item in self._load_digests():
                if item.id == digest_id:
                    return item
            return None

    async def delete_digest(self, digest_id: str) -> bool:
        async with self._lock:
            digests = self._load_digests()
            remaining = [item for item in digests if item.id != digest_id]
            if len(remaining) == len(digests):
                return False
            self._save_digests(remaining)
            return True

    async def clear_user_digests(self, user_id: str) -> bool:
        async with self._lock:
            digests = self._load_digests()
            remaining = [item for item in digests if item.user_id != user_id]
            if len(remaining) == len(digests):
                return False
            self._save_digests(remaining)
            return True


__all__ = ["DigestStore", "MAX_DIGESTS_PER_USER"]
