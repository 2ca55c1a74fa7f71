"""Runs every configured channel concurrently, one task per channel.

A channel whose start() raises is logged and dropped from tracking; the
others keep running. SIGINT/SIGTERM trigger stop_all().
"""

from __future__ import annotations

import asyncio
import logging
import signal
import threading
from typing import Any

from agentgate.channels.base import ChannelHooks, ChannelRegistry, MessageDispatcher
from agentgate.config import Settings
from agentgate.errors import AlreadyRunning, ChannelConfigError

logger = logging.getLogger(__name__)

# Interactive channels that need a terminal and are never auto-started
EXCLUDED_CHANNELS = frozenset({"cli"})


class ChannelsManager:
    def __init__(
        self,
        registry: ChannelRegistry,
        dispatcher: MessageDispatcher,
        settings: Settings,
        handle_signals: bool = True,
    ) -> None:
        self._registry = registry
        self._dispatcher = dispatcher
        self._settings = settings
        self._handle_signals = handle_signals
        self._instances: dict[str, ChannelHooks] = {}
        self._tasks: dict[str, asyncio.Task] = {}
        self._lock = threading.Lock()
        self._started = False
        self._stopped = asyncio.Event()
        self._signals: list[signal.Signals] = []
        self._stop_task: asyncio.Task | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start_all(self) -> ChannelsManager:
        """Instantiate and start every registered, configured channel."""
        with self._lock:
            if self._started:
                raise AlreadyRunning("Channels are already running")
            self._started = True
        self._stopped.clear()
        self._install_signal_handlers()

        for identifier, channel_cls in self._registry.items():
            if identifier in EXCLUDED_CHANNELS:
                continue
            try:
                instance = channel_cls(self._settings.channel_config(identifier), self._dispatcher)
            except ChannelConfigError as e:
                logger.warning("Skipping channel: %s", e)
                continue

            task = asyncio.create_task(self._run_worker(identifier, instance), name=f"agentgate-{identifier}")
            with self._lock:
                self._instances[identifier] = instance
                self._tasks[identifier] = task
            logger.info("Started channel %s", identifier)

        if not self.task_count():
            logger.warning("No channels started")
        return self

    async def stop_all(self) -> None:
        """Stop every channel. Safe to call repeatedly."""
        with self._lock:
            if not self._started:
                self._stopped.set()
                return
            self._started = False
            instances = dict(self._instances)
            tasks = dict(self._tasks)

        for identifier, instance in instances.items():
            try:
                await instance.stop()
            except Exception:
                logger.exception("Error stopping channel %s", identifier)

        pending = [task for task in tasks.values() if not task.done()]
        if pending:
            _, still_running = await asyncio.wait(pending, timeout=self._settings.shutdown_timeout)
            for task in still_running:
                logger.warning("Channel task %s did not stop in time, cancelling", task.get_name())
                task.cancel()
            if still_running:
                await asyncio.wait(still_running, timeout=1.0)

        with self._lock:
            self._instances.clear()
            self._tasks.clear()
        self._remove_signal_handlers()
        self._stopped.set()
        logger.info("All channels stopped")

    async def wait(self) -> None:
        """Block until stop_all() completes or every worker has exited.

        Returns at once if nothing runs.
        """
        if not self.running():
            return
        await self._stopped.wait()

    async def _run_worker(self, identifier: str, instance: ChannelHooks) -> None:
        try:
            await instance.start()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Channel %s crashed", identifier)
        finally:
            self._untrack(identifier, instance)

    def _untrack(self, identifier: str, instance: ChannelHooks) -> None:
        with self._lock:
            if self._instances.get(identifier) is instance:
                del self._instances[identifier]
                self._tasks.pop(identifier, None)
            last_worker = self._started and not self._tasks
        if last_worker:
            # every worker exited on its own; release wait()
            self._stopped.set()

    # ------------------------------------------------------------------
    # Signals
    # ------------------------------------------------------------------

    def _install_signal_handlers(self) -> None:
        if not self._handle_signals:
            return
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self._on_signal, sig)
            except (NotImplementedError, RuntimeError, ValueError):
                logger.debug("Cannot install handler for %s", sig.name)
            else:
                self._signals.append(sig)

    def _remove_signal_handlers(self) -> None:
        if not self._signals:
            return
        loop = asyncio.get_running_loop()
        for sig in self._signals:
            loop.remove_signal_handler(sig)
        self._signals.clear()

    def _on_signal(self, sig: signal.Signals) -> None:
        logger.info("Received %s, stopping channels", sig.name)
        if self._stop_task is None or self._stop_task.done():
            self._stop_task = asyncio.ensure_future(self.stop_all())

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def running(self) -> bool:
        with self._lock:
            return self._started and bool(self._tasks)

    def task_count(self) -> int:
        with self._lock:
            return len(self._tasks)

    def instance(self, identifier: str) -> ChannelHooks | None:
        with self._lock:
            return self._instances.get(identifier)

    def status(self, identifier: str) -> dict[str, Any] | None:
        """Status dict for a tracked channel, None otherwise."""
        with self._lock:
            instance = self._instances.get(identifier)
            task = self._tasks.get(identifier)
        if instance is None:
            return None
        return {
            "identifier": identifier,
            "running": instance.is_running(),
            "task_alive": task is not None and not task.done(),
            "task_name": task.get_name() if task is not None else None,
        }

    def all_statuses(self) -> dict[str, dict[str, Any]]:
        with self._lock:
            identifiers = list(self._instances)
        statuses = {identifier: self.status(identifier) for identifier in identifiers}
        return {k: v for k, v in statuses.items() if v is not None}
