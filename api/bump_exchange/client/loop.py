"""
Client side of one exchange attempt.

Three activities share one event loop: motion sampling (turns bumps into
hits), status polling (discovers matches created by the other side) and a
single hard deadline. Whichever settles the attempt first wins; ``run`` then
stops the other two through one shutdown routine.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
import time
from dataclasses import dataclass
from typing import Any, AsyncIterable, Callable, Protocol

from ..config import (
    CLIENT_EXCHANGE_TIMEOUT_SECONDS,
    CLIENT_HIT_COOLDOWN_SECONDS,
    CLIENT_POLL_INTERVAL_SECONDS,
    CLIENT_QR_TIMEOUT_SECONDS,
)
from ..services.state_machine import IDLE, MATCHED, transition_state
from .http_api import ExchangeApiError

logger = logging.getLogger(__name__)

DEFAULT_MAGNITUDE_THRESHOLD = 2.5


class ExchangeClientApi(Protocol):
    async def hit(self, payload: dict[str, Any]) -> dict[str, Any]: ...

    async def status(self, session_id: str) -> dict[str, Any]: ...

    async def pair(self, token: str, sharing_category: str = "All") -> dict[str, Any]: ...

    async def initiate(self, session_id: str, sharing_category: str = "All") -> dict[str, Any]: ...


@dataclass
class ExchangeOutcome:
    state: str
    session_id: str
    token: str | None = None
    profile: dict[str, Any] | None = None
    qr_token: str | None = None
    error: str | None = None


def new_session_id() -> str:
    return f"exchange_{int(time.time() * 1000)}_{secrets.token_hex(6)}"


class ExchangeLoop:
    def __init__(
        self,
        api: ExchangeClientApi,
        motion: AsyncIterable[float] | None = None,
        *,
        sharing_category: str = "All",
        threshold: float = DEFAULT_MAGNITUDE_THRESHOLD,
        timeout: float = CLIENT_EXCHANGE_TIMEOUT_SECONDS,
        qr_timeout: float = CLIENT_QR_TIMEOUT_SECONDS,
        poll_interval: float = CLIENT_POLL_INTERVAL_SECONDS,
        hit_cooldown: float = CLIENT_HIT_COOLDOWN_SECONDS,
        session_id: str | None = None,
        on_state: Callable[[str], None] | None = None,
    ) -> None:
        self.api = api
        self.motion = motion
        self.sharing_category = sharing_category
        self.threshold = threshold
        self.timeout = timeout
        self.qr_timeout = qr_timeout
        self.poll_interval = poll_interval
        self.hit_cooldown = hit_cooldown
        self.session_id = session_id or new_session_id()
        self.on_state = on_state

        self.state = IDLE
        self.hit_count = 0
        self.qr_token: str | None = None
        self._token: str | None = None
        self._profile: dict[str, Any] | None = None
        self._error: str | None = None
        self._last_hit_at: float | None = None
        self._qr_extended = False
        self._deadline: asyncio.TimerHandle | None = None
        self._motion_task: asyncio.Task | None = None
        self._poll_task: asyncio.Task | None = None
        self._done: asyncio.Future | None = None

    def _transition(self, event: str) -> None:
        previous = self.state
        self.state = transition_state(self.state, event)
        if self.state != previous:
            logger.debug("[client] session=%s %s -> %s (%s)", self.session_id, previous, self.state, event)
            if self.on_state:
                self.on_state(self.state)

    def _settle(self, event: str) -> None:
        self._transition(event)
        if self._done is not None and not self._done.done():
            self._done.set_result(self.state)

    @property
    def settled(self) -> bool:
        return self._done is not None and self._done.done()

    def _arm_deadline(self, seconds: float) -> None:
        if self._deadline is not None:
            self._deadline.cancel()
        self._deadline = asyncio.get_running_loop().call_later(seconds, self._on_deadline)

    def _on_deadline(self) -> None:
        if self.state == MATCHED or self._token is not None or self.settled:
            return
        logger.info("[client] session=%s timed out after %s hit(s)", self.session_id, self.hit_count)
        self._settle("deadline")

    def _fail(self, message: str) -> None:
        if self.settled:
            return
        logger.warning("[client] session=%s failed: %s", self.session_id, message)
        self._error = message
        self._settle("fail")

    def _on_task_done(self, task: asyncio.Task) -> None:
        if task.cancelled() or task.exception() is None:
            return
        exc = task.exception()
        logger.error("[client] session=%s background task crashed: %r", self.session_id, exc)
        self._fail(str(exc) or type(exc).__name__)

    def cancel(self) -> None:
        if not self.settled:
            self._settle("cancel")

    async def run(self, display_code: bool = False) -> ExchangeOutcome:
        self._done = asyncio.get_running_loop().create_future()
        self._transition("start")
        self._arm_deadline(self.timeout)

        try:
            if display_code:
                resp = await self.api.initiate(self.session_id, self.sharing_category)
                self.qr_token = str(resp["token"])
                self._start_polling()
            if self.motion is not None:
                self._motion_task = asyncio.create_task(self._sample_motion(self.motion))
                self._motion_task.add_done_callback(self._on_task_done)
            await self._done
        except ExchangeApiError as exc:
            self._fail(exc.message)
        finally:
            await self._shutdown()

        return ExchangeOutcome(
            state=self.state,
            session_id=self.session_id,
            token=self._token,
            profile=self._profile,
            qr_token=self.qr_token,
            error=self._error,
        )

    async def _shutdown(self) -> None:
        if self._deadline is not None:
            self._deadline.cancel()
            self._deadline = None
        current = asyncio.current_task()
        tasks = [t for t in (self._motion_task, self._poll_task) if t is not None and t is not current]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._motion_task = None
        self._poll_task = None

    async def _sample_motion(self, motion: AsyncIterable[float]) -> None:
        async for magnitude in motion:
            if self.settled:
                return
            if magnitude < self.threshold:
                continue
            now = time.monotonic()
            if self._last_hit_at is not None and now - self._last_hit_at < self.hit_cooldown:
                continue
            self._last_hit_at = now
            await self._send_hit(magnitude)

    async def _send_hit(self, magnitude: float) -> None:
        self.hit_count += 1
        self._transition("hit")
        payload = {
            "session_id": self.session_id,
            "magnitude": magnitude,
            "sharing_category": self.sharing_category,
            "client_timestamp": int(time.time() * 1000),
            "hit_number": self.hit_count,
        }
        try:
            resp = await self.api.hit(payload)
        except ExchangeApiError as exc:
            self._fail(exc.message)
            return
        if resp.get("matched") and resp.get("token"):
            await self._complete(str(resp["token"]))
            return
        self._start_polling()

    def _start_polling(self) -> None:
        if self._poll_task is None and not self.settled:
            self._poll_task = asyncio.create_task(self._poll())
            self._poll_task.add_done_callback(self._on_task_done)

    async def _poll(self) -> None:
        while not self.settled:
            try:
                status = await self.api.status(self.session_id)
            except ExchangeApiError as exc:
                logger.warning("[client] session=%s status poll failed: %s", self.session_id, exc.message)
                status = {}
            if status.get("has_match") and status.get("token"):
                await self._complete(str(status["token"]))
                return
            if status.get("scan_status") == "pending_auth" and not self._qr_extended:
                # scanner is signing in; give them the QR window
                self._qr_extended = True
                self._transition("pending_auth")
                self._arm_deadline(self.qr_timeout)
            await asyncio.sleep(self.poll_interval)

    async def _complete(self, token: str) -> None:
        if self.settled or self._token is not None:
            return
        # the server has paired us; only a failed profile fetch can end this attempt now
        self._token = token
        if self._deadline is not None:
            self._deadline.cancel()
            self._deadline = None
        try:
            resp = await self.api.pair(token, self.sharing_category)
        except ExchangeApiError as exc:
            self._fail(exc.message)
            return
        if self.settled:
            return
        self._profile = resp.get("profile")
        logger.info("[client] session=%s matched", self.session_id)
        self._settle("matched")
