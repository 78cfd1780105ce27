"""
Viewport-driven cluster subscription (client side).

ClusterSubscription keeps a live channel to the clustering service for one
map view:

    DISCONNECTED -> CONNECTING -> JOINED -> (UPDATING | ERROR) -> DISCONNECTED

* Viewport/zoom/filter changes are debounced; only the last change inside a
  window is pushed as a single `bounds_changed` message.
* Responses are applied in arrival order, so the most recent cluster set
  always wins. Requests already sent are never cancelled.
* Transport failures are retried up to `max_retries` times, attempt n
  waiting `retry_delay_ms * n`. Errors reported by the server (bad bounds,
  bad filters) are surfaced at once and never retried.
* `close()` always leaves the channel and closes the transport.

Usage:

    async with ClusterSubscription(lambda: WebSocketTransport(url), viewport, zoom) as sub:
        sub.update_viewport(new_viewport, 11)
"""
import asyncio
import contextlib
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from routewise.clustering.channel import (
    BOUNDS_CHANGED,
    CLOSE,
    CLUSTERING_ERROR,
    CLUSTERS_UPDATED,
    ERROR,
    JOIN,
    LEAVE,
    REFRESH_CLUSTERS,
    REPLY,
    message,
)
from routewise.clustering.transport import Transport, TransportError
from routewise.config import (
    CLUSTER_DEBOUNCE_MS,
    CLUSTER_JOIN_TIMEOUT_S,
    CLUSTER_MAX_RETRIES,
    CLUSTER_RETRY_DELAY_MS,
    CLUSTER_TOPIC,
)

LOGGER = logging.getLogger(__name__)


class SubscriptionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    JOINED = "joined"
    UPDATING = "updating"
    ERROR = "error"


class ServerError(Exception):
    """Error reply from the channel; retrying would reproduce it."""


class ClusterSubscription:
    def __init__(
        self,
        transport_factory: Callable[[], Transport],
        viewport: Dict[str, float],
        zoom: float,
        filters: Optional[Dict[str, Any]] = None,
        *,
        topic: str = CLUSTER_TOPIC,
        debounce_ms: int = CLUSTER_DEBOUNCE_MS,
        max_retries: int = CLUSTER_MAX_RETRIES,
        retry_delay_ms: int = CLUSTER_RETRY_DELAY_MS,
        join_timeout: float = CLUSTER_JOIN_TIMEOUT_S,
        on_change: Optional[Callable[["ClusterSubscription"], None]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._transport_factory = transport_factory
        self.topic = topic
        self.debounce_ms = debounce_ms
        self.max_retries = max_retries
        self.retry_delay_ms = retry_delay_ms
        self.join_timeout = join_timeout
        self._on_change = on_change
        self._sleep = sleep

        self.viewport = dict(viewport)
        self.zoom = zoom
        self.filters = dict(filters or {})

        self.state = SubscriptionState.DISCONNECTED
        self.clusters: List[Dict[str, Any]] = []
        self.is_loading = False
        self.error: Optional[str] = None
        self.terminal = False
        self.last_update_reason: Optional[str] = None
        self.retry_count = 0

        self._transport: Optional[Transport] = None
        self._reader: Optional[asyncio.Task] = None
        self._connector: Optional[asyncio.Task] = None
        self._debounce: Optional[asyncio.Task] = None
        self._pending: Dict[str, asyncio.Future] = {}
        self._ref = 0
        self._closed = False

    # ---------- public API ----------

    @property
    def is_connected(self) -> bool:
        return self.state in (SubscriptionState.JOINED, SubscriptionState.UPDATING)

    @property
    def total_clusters(self) -> int:
        return len(self.clusters)

    @property
    def single_pois(self) -> int:
        return sum(1 for c in self.clusters if c.get("type") == "single_poi")

    @property
    def multi_poi_clusters(self) -> int:
        return sum(1 for c in self.clusters if c.get("type") == "cluster")

    def snapshot(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "clusters": list(self.clusters),
            "is_loading": self.is_loading,
            "is_connected": self.is_connected,
            "error": self.error,
            "total_clusters": self.total_clusters,
            "single_pois": self.single_pois,
            "multi_poi_clusters": self.multi_poi_clusters,
        }

    async def start(self) -> None:
        """Connect and join; returns once joined or once connecting has failed for good."""
        self._closed = False
        await self._run_connector(failure=None)

    async def reconnect(self) -> None:
        """Drop whatever connection exists and start over with a fresh retry budget."""
        self._cancel_debounce()
        await self._cancel_task(self._connector)
        self._connector = None
        await self._release_transport(leave=True)
        self.retry_count = 0
        self.terminal = False
        self._closed = False
        await self._run_connector(failure=None)

    def update_viewport(self, viewport: Dict[str, float], zoom: float, filters: Optional[Dict[str, Any]] = None) -> None:
        """Record a new view; pushed after the debounce window if the channel is joined."""
        self.viewport = dict(viewport)
        self.zoom = zoom
        if filters is not None:
            self.filters = dict(filters)
        if not self.is_connected:
            return
        self._cancel_debounce()
        self.is_loading = True
        self._debounce = asyncio.ensure_future(self._debounced_push(self._params()))
        self._notify()

    async def refresh(self) -> None:
        if not self.is_connected:
            return
        self.is_loading = True
        self._notify()
        try:
            await self._request(REFRESH_CLUSTERS, {})
        except ServerError as exc:
            LOGGER.error("Failed to refresh clusters: %s", exc)
            self.error = f"Refresh failed: {exc}"
            self.is_loading = False
            self._notify()
        except TransportError:
            # The reader has already scheduled recovery.
            self.is_loading = False
            self._notify()

    async def close(self) -> None:
        """Release the channel and close the transport, whatever the current state."""
        self._closed = True
        self._cancel_debounce()
        await self._cancel_task(self._debounce)
        await self._cancel_task(self._connector)
        self._connector = None
        await self._release_transport(leave=True)
        self.is_loading = False
        self._set_state(SubscriptionState.DISCONNECTED)

    async def __aenter__(self) -> "ClusterSubscription":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # ---------- connection lifecycle ----------

    async def _run_connector(self, failure: Optional[BaseException]) -> None:
        connector = asyncio.ensure_future(self._connect_loop(failure))
        self._connector = connector
        try:
            await asyncio.wait([connector])
        except asyncio.CancelledError:
            connector.cancel()
            raise
        # A connector cancelled by close() or reconnect() is not an error for the caller.
        if not connector.cancelled():
            connector.result()

    async def _connect_loop(self, failure: Optional[BaseException]) -> None:
        while not self._closed:
            if failure is not None:
                if self.retry_count >= self.max_retries:
                    self.terminal = True
                    self.error = f"Connection failed: {failure}"
                    self.is_loading = False
                    LOGGER.error("Giving up after %d retries: %s", self.max_retries, failure)
                    self._set_state(SubscriptionState.ERROR)
                    return
                self.retry_count += 1
                LOGGER.info("Retrying connection (%d/%d)...", self.retry_count, self.max_retries)
                await self._sleep(self.retry_delay_ms * self.retry_count / 1000.0)
                if self._closed:
                    return
            failure = await self._attempt_join()
            if failure is None:
                return

    async def _attempt_join(self) -> Optional[BaseException]:
        """One connect + join. Returns the network failure to retry on, or None when done."""
        await self._release_transport(leave=False)
        self.error = None
        self.is_loading = True
        self._set_state(SubscriptionState.CONNECTING)

        transport = self._transport_factory()
        self._transport = transport
        try:
            await transport.connect()
            self._reader = asyncio.ensure_future(self._read_loop(transport))
            response = await asyncio.wait_for(self._request(JOIN, self._params()), self.join_timeout)
        except ServerError as exc:
            LOGGER.error("Clustering error on join: %s", exc)
            await self._release_transport(leave=False)
            self.terminal = True
            self.error = str(exc)
            self.is_loading = False
            self._set_state(SubscriptionState.ERROR)
            return None
        except (TransportError, OSError, asyncio.TimeoutError) as exc:
            reason = str(exc) or "join timeout"
            LOGGER.warning("Connection failed: %s", reason)
            await self._release_transport(leave=False)
            self.error = f"Connection failed: {reason}"
            self.is_loading = False
            self._set_state(SubscriptionState.ERROR)
            return exc if str(exc) else TransportError(reason)

        LOGGER.info("POI channel %s joined", self.topic)
        self.retry_count = 0
        self.terminal = False
        self.clusters = list(response.get("clusters") or [])
        self.last_update_reason = "join"
        self.is_loading = False
        self._set_state(SubscriptionState.JOINED)
        return None

    async def _read_loop(self, transport: Transport) -> None:
        try:
            while True:
                msg = await transport.recv()
                if transport is not self._transport:
                    return
                self._dispatch(msg)
        except (TransportError, OSError) as exc:
            if transport is self._transport and not self._closed:
                self._on_transport_lost(exc)

    def _on_transport_lost(self, exc: BaseException) -> None:
        was_joined = self.is_connected
        self._fail_pending(exc if isinstance(exc, TransportError) else TransportError(str(exc)))
        if not was_joined:
            # A join is in flight; _attempt_join sees the failed request and retries.
            return
        LOGGER.warning("POI channel lost: %s", exc)
        self._cancel_debounce()
        self.error = f"Connection error: {exc}"
        self.is_loading = False
        self._set_state(SubscriptionState.ERROR)
        self._connector = asyncio.ensure_future(self._connect_loop(exc))

    async def _release_transport(self, leave: bool) -> None:
        transport, self._transport = self._transport, None
        reader, self._reader = self._reader, None
        self._fail_pending(TransportError("transport released"))
        if transport is None:
            await self._cancel_task(reader)
            return
        try:
            if leave and self.is_connected:
                try:
                    await transport.send(message(self.topic, LEAVE, {}, self._next_ref()))
                except (TransportError, OSError) as exc:
                    LOGGER.debug("leave not delivered: %s", exc)
        finally:
            await transport.close()
            await self._cancel_task(reader)

    # ---------- messaging ----------

    def _params(self) -> Dict[str, Any]:
        return {"bounds": dict(self.viewport), "zoom": self.zoom, "filters": dict(self.filters)}

    def _next_ref(self) -> str:
        self._ref += 1
        return str(self._ref)

    async def _request(self, event: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        transport = self._transport
        if transport is None:
            raise TransportError("not connected")
        ref = self._next_ref()
        future = asyncio.get_running_loop().create_future()
        self._pending[ref] = future
        try:
            await transport.send(message(self.topic, event, payload, ref))
            reply = await future
        finally:
            self._pending.pop(ref, None)
        if reply.get("status") != "ok":
            reason = (reply.get("response") or {}).get("reason") or "unknown error"
            raise ServerError(reason)
        return reply.get("response") or {}

    async def _debounced_push(self, params: Dict[str, Any]) -> None:
        await self._sleep(self.debounce_ms / 1000.0)
        transport = self._transport
        if transport is None or not self.is_connected:
            return
        self._set_state(SubscriptionState.UPDATING)
        try:
            await transport.send(message(self.topic, BOUNDS_CHANGED, params, self._next_ref()))
        except TransportError as exc:
            LOGGER.warning("bounds update not sent: %s", exc)

    def _dispatch(self, msg: Dict[str, Any]) -> None:
        event = msg.get("event")
        payload = msg.get("payload") or {}
        if event == REPLY:
            future = self._pending.get(msg.get("ref"))
            if future is not None and not future.done():
                future.set_result(payload)
            return
        if msg.get("topic") != self.topic:
            return
        if event == CLUSTERS_UPDATED:
            self.clusters = list(payload.get("clusters") or [])
            self.last_update_reason = payload.get("reason")
            LOGGER.debug("Clusters updated: %s clusters (%s)", payload.get("cluster_count"), self.last_update_reason)
            self.is_loading = False
            self.error = None
            if self.state == SubscriptionState.UPDATING:
                self._set_state(SubscriptionState.JOINED)
            else:
                self._notify()
        elif event == CLUSTERING_ERROR:
            LOGGER.error("Clustering error: %s", payload.get("reason"))
            self.error = payload.get("reason") or "clustering error"
            self.is_loading = False
            if self.state == SubscriptionState.UPDATING:
                self._set_state(SubscriptionState.JOINED)
            else:
                self._notify()
        elif event in (ERROR, CLOSE):
            if self.is_connected and not self._closed:
                self._on_transport_lost(TransportError(f"channel {event}"))

    # ---------- helpers ----------

    def _fail_pending(self, exc: BaseException) -> None:
        pending, self._pending = self._pending, {}
        for future in pending.values():
            if not future.done():
                future.set_exception(exc)

    def _cancel_debounce(self) -> None:
        if self._debounce is not None and not self._debounce.done():
            self._debounce.cancel()

    @staticmethod
    async def _cancel_task(task: Optional[asyncio.Future]) -> None:
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    def _set_state(self, state: SubscriptionState) -> None:
        if state != self.state:
            LOGGER.debug("subscription %s -> %s", self.state.value, state.value)
        self.state = state
        self._notify()

    def _notify(self) -> None:
        if self._on_change is not None:
            self._on_change(self)
