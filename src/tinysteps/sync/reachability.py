"""
ReachabilityMonitor — debounced online/offline signal.

Raw observations arrive two ways:
  * report(online) — pushed by a platform network observer, or by tests
  * a polling probe (TCP connect to the remote host) started by start()

A raw value only becomes the committed state after it has held for the
whole quiet period (``debounce_seconds``). Each new observation restarts the
timer, so online → offline → online inside the window commits nothing and
triggers no redundant sync.

Subscribers are called with the new boolean on every committed transition.
Coroutine subscribers are scheduled as independent tasks: a sync pass
started by an online transition must not be cancelled when the next raw
observation restarts the debounce timer.
"""
import asyncio
import inspect
import logging
from typing import Awaitable, Callable, List, Optional, Set
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

Probe = Callable[[], Awaitable[bool]]
Subscriber = Callable[[bool], object]


def tcp_probe(host: str, port: int, timeout: float = 3.0) -> Probe:
    """Build a probe that reports True if a TCP connection to host:port opens."""

    async def _probe() -> bool:
        try:
            _, writer = await asyncio.wait_for(
                asyncio.open_connection(host, port), timeout=timeout
            )
        except (OSError, asyncio.TimeoutError):
            return False
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass
        return True

    return _probe


def probe_target_from_url(url: str):
    """Extract (host, port) from a remote URL, or (\"\", None) if it has no host."""
    parsed = urlparse(url)
    if not parsed.hostname:
        return "", None
    return parsed.hostname, parsed.port or (443 if parsed.scheme == "https" else 80)


class ReachabilityMonitor:
    """Tracks connectivity and notifies subscribers of debounced transitions."""

    def __init__(
        self,
        probe: Optional[Probe] = None,
        *,
        debounce_seconds: float = 1.5,
        poll_seconds: float = 10.0,
        initially_online: bool = False,
    ):
        """
        Args:
            probe: Async callable returning the raw reachability. None means
                   no polling; state changes only through report().
            debounce_seconds: Quiet period before a raw value is committed.
            poll_seconds: Interval between probe calls while started.
            initially_online: Committed state before the first observation.
        """
        self._probe = probe
        self._debounce = debounce_seconds
        self._poll_seconds = poll_seconds
        self._online = initially_online
        self._pending: Optional[bool] = None
        self._subscribers: List[Subscriber] = []
        self._settle_task: Optional[asyncio.Task] = None
        self._poll_task: Optional[asyncio.Task] = None
        self._callback_tasks: Set[asyncio.Task] = set()

    # ─── State ────────────────────────────────────────────────────────────────

    @property
    def is_online(self) -> bool:
        return self._online

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a transition callback. Returns an unsubscribe function."""
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return _unsubscribe

    # ─── Lifecycle ────────────────────────────────────────────────────────────

    async def start(self) -> None:
        """Start polling the probe (no-op without a probe)."""
        if self._probe is None or self._poll_task is not None:
            return
        self._poll_task = asyncio.create_task(self._poll_loop(), name="reachability-poll")
        logger.info("Reachability monitor started (poll=%.0fs, debounce=%.1fs)",
                    self._poll_seconds, self._debounce)

    async def stop(self) -> None:
        tasks = [t for t in (self._poll_task, self._settle_task) if t is not None]
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._poll_task = None
        self._settle_task = None
        if self._callback_tasks:
            await asyncio.gather(*self._callback_tasks, return_exceptions=True)

    # ─── Observations ─────────────────────────────────────────────────────────

    def report(self, online: bool) -> None:
        """Feed one raw observation. Must be called from the event loop."""
        online = bool(online)
        if self._settle_task is not None and not self._settle_task.done():
            if online == self._pending:
                return  # same value already waiting out its quiet period
            self._settle_task.cancel()
            self._settle_task = None
        self._pending = None
        if online == self._online:
            return
        self._pending = online
        self._settle_task = asyncio.get_running_loop().create_task(self._settle(online))

    async def check_now(self) -> bool:
        """Run the probe once and feed the result through report()."""
        if self._probe is None:
            return self._online
        try:
            online = await self._probe()
        except Exception as exc:
            logger.debug("Reachability probe failed: %s", exc)
            online = False
        self.report(online)
        return online

    # ─── Internals ────────────────────────────────────────────────────────────

    async def _poll_loop(self) -> None:
        while True:
            await self.check_now()
            await asyncio.sleep(self._poll_seconds)

    async def _settle(self, online: bool) -> None:
        await asyncio.sleep(self._debounce)
        self._pending = None
        self._settle_task = None
        if online == self._online:
            return
        self._online = online
        logger.info("Connectivity %s", "restored" if online else "lost")
        self._notify(online)

    def _notify(self, online: bool) -> None:
        for callback in list(self._subscribers):
            try:
                result = callback(online)
            except Exception:
                logger.exception("Reachability subscriber failed")
                continue
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._callback_tasks.add(task)
                task.add_done_callback(self._callback_done)

    def _callback_done(self, task: asyncio.Task) -> None:
        self._callback_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Reachability subscriber failed: %s", exc)
