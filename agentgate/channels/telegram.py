"""Telegram channel: Bot API long polling over httpx.

Config keys (``channels.telegram``):
    bot_token      - Bot token from @BotFather (required)
    allowed_users  - Telegram usernames allowed to talk to the agent;
                     empty means nobody is
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any

import httpx

from agentgate.channels.base import ChannelHooks, MessageDispatcher

logger = logging.getLogger(__name__)

# Telegram Bot API base
TG_API = "https://api.telegram.org/bot{token}/{method}"

# Max Telegram message length
TG_MAX_LEN = 4096

POLL_TIMEOUT = 30  # seconds, server side long poll
TYPING_INTERVAL = 4.0  # Telegram shows "typing" for ~5s per chat action
ERROR_BACKOFF = 5.0


def split_message(text: str, limit: int = TG_MAX_LEN) -> list[str]:
    """Split text into chunks of at most ``limit`` characters, on newlines when possible."""
    if len(text) <= limit:
        return [text]

    chunks: list[str] = []
    current = ""
    for line in text.split("\n"):
        while len(line) > limit:
            if current:
                chunks.append(current)
                current = ""
            chunks.append(line[:limit])
            line = line[limit:]
        if len(current) + len(line) + 1 > limit:
            if current:
                chunks.append(current)
            current = line
        else:
            current = f"{current}\n{line}" if current else line
    if current:
        chunks.append(current)
    return chunks


class TelegramChannel(ChannelHooks):
    identifier = "telegram"
    required_config = ("bot_token",)

    def __init__(
        self,
        config: dict[str, Any] | None,
        dispatcher: MessageDispatcher,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(config, dispatcher)
        self.bot_token = self.config["bot_token"]
        self.allowed_users = {str(u).lstrip("@") for u in self.config.get("allowed_users") or []}
        self._offset = 0
        self._running = False
        self._stop_event = asyncio.Event()
        self._typing: dict[str, asyncio.Task] = {}
        self._transport = transport
        self._http: httpx.AsyncClient | None = None
        self._polling = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Poll for updates until stop() is called."""
        self._running = True
        self._polling = True
        self._stop_event.clear()
        if not self.allowed_users:
            logger.warning("[telegram] No allowed_users configured. No messages will be processed.")

        try:
            me = await self._tg("getMe") or {}
            logger.info("Bot started: @%s (%s)", me.get("username"), me.get("id"))
            await self._register_commands()

            while self._running:
                try:
                    updates = await self._poll_once()
                    for update in updates or []:
                        self._offset = update["update_id"] + 1
                        await self._handle_update(update)
                except httpx.ReadTimeout:
                    continue  # Normal for long polling
                except (httpx.HTTPError, ValueError) as e:
                    logger.error("Polling error: %s", e)
                    with contextlib.suppress(asyncio.TimeoutError):
                        await asyncio.wait_for(self._stop_event.wait(), timeout=ERROR_BACKOFF)
        finally:
            self._running = False
            for task in self._typing.values():
                task.cancel()
            self._typing.clear()
            self._polling = False
            await self._close_http()

    async def stop(self) -> None:
        self._running = False
        self._stop_event.set()
        # start() closes its own client on the way out
        if not self._polling:
            await self._close_http()

    def is_running(self) -> bool:
        return self._running

    async def _poll_once(self) -> list[dict[str, Any]]:
        """One getUpdates long poll, abandoned early if stop() is called."""
        poll = asyncio.create_task(
            self._tg("getUpdates", {"offset": self._offset, "timeout": POLL_TIMEOUT})
        )
        stopped = asyncio.create_task(self._stop_event.wait())
        try:
            done, _ = await asyncio.wait({poll, stopped}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (poll, stopped):
                if not task.done():
                    task.cancel()
        if poll in done:
            return poll.result() or []
        return []

    async def _handle_update(self, update: dict[str, Any]) -> None:
        message = update.get("message")
        if not message:
            return
        chat_id = str(message["chat"]["id"])
        await self.dispatcher.dispatch(self, chat_id, message)

    async def _register_commands(self) -> None:
        commands = [
            {"command": cmd.name, "description": cmd.description or "No description"}
            for cmd in self.dispatcher.commands.commands()
        ]
        try:
            await self._tg("setMyCommands", {"commands": commands})
            logger.info("[telegram] Registered %d bot commands", len(commands))
        except httpx.HTTPError as e:
            logger.warning("[telegram] Failed to register bot commands: %s", e)

    # ------------------------------------------------------------------
    # Channel hooks
    # ------------------------------------------------------------------

    def extract_content(self, raw: Any) -> str | None:
        return raw.get("text")

    def extract_user_id(self, source_id: str, raw: Any) -> str | None:
        return (raw.get("from") or {}).get("username")

    def authorize(self, user_id: str | None) -> bool:
        if not user_id or not self.allowed_users:
            return False
        return user_id in self.allowed_users

    async def before_process(self, source_id: str, user_id: str | None, content: str, raw: Any) -> None:
        logger.info("[telegram] Message from @%s: %s", user_id, content)

    async def after_process(self, source_id: str, user_id: str | None, content: str, raw: Any) -> None:
        logger.info("[telegram] Handled message from @%s", user_id)

    async def handle_unauthorized(self, source_id: str, user_id: str | None, raw: Any) -> None:
        logger.warning("[telegram] Ignored message from unauthorized user @%s (chat_id: %s)", user_id, source_id)

    async def handle_error(self, source_id: str, user_id: str | None, error: Exception, raw: Any) -> None:
        logger.error("[telegram] Error processing message: %s", error, exc_info=error)

    async def start_typing(self, source_id: str) -> None:
        task = self._typing.get(source_id)
        if task is not None and not task.done():
            return
        self._typing[source_id] = asyncio.create_task(self._typing_loop(source_id))

    async def stop_typing(self, source_id: str) -> None:
        task = self._typing.pop(source_id, None)
        if task is not None:
            task.cancel()

    async def _typing_loop(self, source_id: str) -> None:
        while True:
            try:
                await self._tg("sendChatAction", {"chat_id": source_id, "action": "typing"})
            except (httpx.HTTPError, ValueError) as e:
                logger.debug("sendChatAction failed: %s", e)
            await asyncio.sleep(TYPING_INTERVAL)

    async def deliver_message(self, source_id: str, text: str) -> None:
        """Send a message, splitting if needed."""
        chunks = split_message(text)
        for i, chunk in enumerate(chunks):
            await self._tg("sendMessage", {"chat_id": source_id, "text": chunk})
            if i < len(chunks) - 1:
                await asyncio.sleep(0.3)  # Rate limit

    # ------------------------------------------------------------------
    # Bot API
    # ------------------------------------------------------------------

    def _client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(
                timeout=httpx.Timeout(connect=10, read=POLL_TIMEOUT + 10, write=10, pool=10),
                transport=self._transport,
            )
        return self._http

    async def _close_http(self) -> None:
        if self._http is not None:
            http, self._http = self._http, None
            await http.aclose()

    async def _tg(self, method: str, params: dict[str, Any] | None = None) -> Any:
        """Call a Telegram Bot API method; None when Telegram reports an error."""
        url = TG_API.format(token=self.bot_token, method=method)
        response = await self._client().post(url, json=params or {})
        data = response.json()
        if not data.get("ok"):
            logger.warning("Telegram API error (%s): %s", method, data.get("description", data))
            return None
        return data.get("result")
