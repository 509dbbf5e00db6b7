"""Hourly digest scheduler using an asyncio task."""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable

from ..schemas.digest import (
    DEFAULT_DIGEST_HOUR_UTC,
    DEFAULT_DIGEST_TOPIC,
    Digest,
    DigestUserSettings,
)
from .digest import DigestGenerator
from .digest_store import DigestStore
from .push import ExpoPushNotifier

logger = logging.getLogger(__name__)

# Pause between users in one run to stay under provider rate limits
USER_DELAY_SECONDS = 1.0

_UNSET = object()


def next_hour_boundary(now: datetime) -> datetime:
    """Return the next top of the hour strictly after ``now``."""

    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    floored = now.replace(minute=0, second=0, microsecond=0)
    return floored + timedelta(hours=1)


class DigestScheduler:
    """Deliver digests to every user scheduled for the current UTC hour."""

    def __init__(
        self,
        store: DigestStore,
        generator: DigestGenerator,
        notifier: ExpoPushNotifier,
        *,
        user_delay_seconds: float = USER_DELAY_SECONDS,
        clock: Callable[[], datetime] | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._store = store
        self._generator = generator
        self._notifier = notifier
        self._user_delay = user_delay_seconds
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._sleep = sleep
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run_forever())
        logger.info("Digest scheduler started; checking every hour at :00 UTC")

    async def shutdown(self) -> None:
        task = self._task
        self._task = None
        if task is None:
            return
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task
        logger.info("Digest scheduler stopped")

    async def _run_forever(self) -> None:
        while True:
            target = next_hour_boundary(self._clock())
            delay = (target - self._clock()).total_seconds()
            if delay > 0:
                await self._sleep(delay)
            try:
                await self.run_hour(target.hour)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Digest scheduler run failed")

    async def run_hour(self, utc_hour: int) -> int:
        """Process every user scheduled for ``utc_hour``; return the user count."""

        users = await self._store.get_users_for_hour(utc_hour)
        logger.info(
            "Hourly digest check (UTC hour %d): %d user(s) scheduled",
            utc_hour,
            len(users),
        )
        for index, user in enumerate(users):
            await self.process_user(user)
            if index < len(users) - 1:
                await self._sleep(self._user_delay)
        return len(users)

    async def process_user(self, user: DigestUserSettings) -> Digest | None:
        """Generate, store and push one user's digest; failures are logged."""

        try:
            stored = await self._produce(user)
        except Exception as exc:
            logger.error("Failed to process digest for %s: %s", user.user_id, exc)
            return None
        await self._deliver(user, stored)
        return stored

    async def _produce(self, user: DigestUserSettings) -> Digest:
        digest = await self._generator.generate(user.topic, user.custom_prompt)
        return await self._store.save_digest(user.user_id, digest)

    async def _deliver(self, user: DigestUserSettings, stored: Digest) -> None:
        if user.push_token:
            result = await self._notifier.send_digest(user.push_token, stored)
            if result.success:
                logger.info("Digest sent to %s", user.user_id)
            else:
                logger.error(
                    "Failed to send notification to %s: %s", user.user_id, result.error
                )
        else:
            logger.warning(
                "No push token for %s, digest saved but not sent", user.user_id
            )

    async def send_manual_digest(
        self,
        user_id: str,
        *,
        topic: str | None = None,
        custom_prompt: object = _UNSET,
    ) -> Digest:
        """Generate a digest now, regardless of the user's enabled flag."""

        user = await self._store.get_user(user_id)
        if user is None:
            logger.info("Creating default digest settings for user %s", user_id)
            defaults = {
                "topic": topic or DEFAULT_DIGEST_TOPIC,
                "custom_prompt": None if custom_prompt is _UNSET else custom_prompt,
                "digest_enabled": False,
                "digest_time_utc": DEFAULT_DIGEST_HOUR_UTC,
            }
            user = await self._store.save_user_settings(user_id, defaults)

        overrides: dict[str, object] = {}
        if topic:
            overrides["topic"] = topic
        if custom_prompt is not _UNSET:
            overrides["custom_prompt"] = custom_prompt
        if overrides:
            user = user.model_copy(update=overrides)

        logger.info("Manual digest requested for %s (topic: %s)", user_id, user.topic)
        stored = await self._produce(user)
        await self._deliver(user, stored)
        return stored


__all__ = ["DigestScheduler", "USER_DELAY_SECONDS", "next_hour_boundary"]
