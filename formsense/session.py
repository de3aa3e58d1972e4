"""Single entry point for detection runs and the triggers that start them."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Dict, List, Optional

from .config import DetectionConfig
from .detection import ProgressiveDetector
from .dom import DomNode
from .frames import FrameTraversal
from .monitor import DynamicContentMonitor
from .network_capture import NetworkCapture
from .registry import ContainerInfo, UnifiedFieldRegistry

ResultCallback = Callable[[str, List[ContainerInfo]], None]


class DetectionSession:
    """Runs detection and registration with at most one run in flight.

    Callers that arrive while a run is active share its result instead of
    starting another one. Fire-and-forget triggers (new documents, qualifying
    mutations, captured schemas) go through :meth:`request`.
    """

    def __init__(
        self,
        detector: ProgressiveDetector,
        registry: Optional[UnifiedFieldRegistry] = None,
        *,
        config: Optional[DetectionConfig] = None,
        quick: bool = False,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.detector = detector
        self.registry = registry or UnifiedFieldRegistry()
        self.config = config or detector.config
        self.quick = quick
        self.sleep = sleep
        self.logger = logger or logging.getLogger("formsense.session")
        self.runs = 0
        self.coalesced = 0
        self.last_result: List[ContainerInfo] = []
        self.last_trigger: Optional[str] = None
        self._inflight: Optional[asyncio.Future] = None
        self._listeners: Dict[int, ResultCallback] = {}
        self._next_token = 0
        self._detachers: List[Callable[[], None]] = []
        self._debounce: Optional[asyncio.Task] = None

    @property
    def in_progress(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    def on_result(self, callback: ResultCallback) -> Callable[[], None]:
        token = self._next_token
        self._next_token += 1
        self._listeners[token] = callback

        def unsubscribe() -> None:
            self._listeners.pop(token, None)

        return unsubscribe

    async def run(self, trigger: str = "manual") -> List[ContainerInfo]:
        if self.in_progress:
            self.coalesced += 1
            self.logger.debug("Run already in flight; %s joins it", trigger)
            return await asyncio.shield(self._inflight)
        self._inflight = asyncio.ensure_future(self._execute(trigger))
        return await asyncio.shield(self._inflight)

    async def _detect(self) -> List[DomNode]:
        if self.quick:
            return await self.detector.detect_once()
        return await self.detector.detect_form_like_containers()

    async def _execute(self, trigger: str) -> List[ContainerInfo]:
        self.runs += 1
        self.last_trigger = trigger
        self.logger.info("Detection run %s started (%s)", self.runs, trigger)
        self.registry.clear()
        try:
            containers = await self._detect()
        except Exception as exc:  # noqa: BLE001
            self.logger.warning("Detection run failed: %s", exc)
            containers = []

        infos: List[ContainerInfo] = []
        for index, container in enumerate(containers):
            container_id = f"form-{index}"
            try:
                infos.append(await self.registry.register_container(container, container_id))
            except Exception as exc:  # noqa: BLE001
                self.logger.warning("Failed to register %s: %s", container_id, exc)
        self.last_result = infos
        for callback in list(self._listeners.values()):
            try:
                callback(trigger, infos)
            except Exception as exc:  # noqa: BLE001
                self.logger.debug("Result listener failed: %s", exc)
        return infos

    def request(self, trigger: str) -> Optional[asyncio.Future]:
        """Schedule a run unless one is already in flight."""
        if self.in_progress:
            self.coalesced += 1
            self.logger.debug("Ignoring %s trigger, run in flight", trigger)
            return None
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            self.logger.debug("No running loop for %s trigger", trigger)
            return None
        self._inflight = asyncio.ensure_future(self._execute(trigger))
        return self._inflight

    async def run_with_retries(self) -> List[ContainerInfo]:
        attempts = max(1, self.config.max_attempts)
        for attempt in range(1, attempts + 1):
            infos = await self.run(f"attempt-{attempt}")
            if infos:
                return infos
            if attempt < attempts:
                self.logger.info(
                    "No containers on attempt %s/%s; retrying in %sms",
                    attempt,
                    attempts,
                    self.config.retry_backoff_ms,
                )
                await self.sleep(self.config.retry_backoff_ms / 1000.0)
        return []

    def _schedule_debounced(self, trigger: str) -> None:
        if self._debounce is not None and not self._debounce.done():
            return
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return

        async def later() -> None:
            await self.sleep(self.config.mutation_debounce_ms / 1000.0)
            self.request(trigger)

        self._debounce = asyncio.ensure_future(later())

    def attach(
        self,
        *,
        traversal: Optional[FrameTraversal] = None,
        monitor: Optional[DynamicContentMonitor] = None,
        network: Optional[NetworkCapture] = None,
    ) -> None:
        if traversal is not None:
            self._detachers.append(traversal.on_new_document(lambda _doc: self.request("new-document")))
        if monitor is not None:
            self._detachers.append(
                monitor.on_change(lambda _key, _records: self._schedule_debounced("mutation"))
            )
        if network is not None:
            self._detachers.append(network.on_schema(lambda _signal: self.request("schema")))

    def detach(self) -> None:
        for detach in self._detachers:
            detach()
        self._detachers.clear()
        if self._debounce is not None and not self._debounce.done():
            self._debounce.cancel()
        self._debounce = None


__all__ = ["DetectionSession"]
