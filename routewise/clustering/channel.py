"""
Cluster channel protocol.

Messages are JSON objects {topic, event, payload, ref}. ClusterChannel holds
one socket's state and turns each inbound message into the list of outbound
messages (replies and pushes) to send back, so the same handler serves the
FastAPI WebSocket endpoint and the in-process transport.
"""
import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence

from routewise.clustering.engine import ClusterEngine, ClusteringError
from routewise.config import CLUSTER_TOPIC

LOGGER = logging.getLogger(__name__)

PHOENIX_TOPIC = "phoenix"

JOIN = "phx_join"
LEAVE = "phx_leave"
REPLY = "phx_reply"
ERROR = "phx_error"
CLOSE = "phx_close"
HEARTBEAT = "heartbeat"

BOUNDS_CHANGED = "bounds_changed"
REFRESH_CLUSTERS = "refresh_clusters"
CLUSTERS_UPDATED = "clusters_updated"
CLUSTERING_ERROR = "clustering_error"


def message(topic: str, event: str, payload: Optional[Dict[str, Any]] = None, ref: Optional[str] = None) -> Dict[str, Any]:
    return {"topic": topic, "event": event, "payload": payload or {}, "ref": ref}


def reply(topic: str, ref: Optional[str], status: str, response: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    return message(topic, REPLY, {"status": status, "response": response or {}}, ref)


def clusters_payload(clusters: List[Dict[str, Any]], reason: str) -> Dict[str, Any]:
    return {"clusters": clusters, "cluster_count": len(clusters), "reason": reason}


class ClusterChannel:
    def __init__(self, engine: ClusterEngine, topic: str = CLUSTER_TOPIC, default_categories: Sequence[str] = ()):
        self.engine = engine
        self.topic = topic
        self.default_categories = tuple(default_categories)
        self.joined = False
        self.closed = False
        self.params: Dict[str, Any] = {}

    def handle(self, msg: Any) -> List[Dict[str, Any]]:
        if not isinstance(msg, Mapping) or not isinstance(msg.get("event"), str):
            return [reply(PHOENIX_TOPIC, None, "error", {"reason": "malformed message"})]

        topic = msg.get("topic")
        event = msg["event"]
        ref = msg.get("ref")
        payload = msg.get("payload") if isinstance(msg.get("payload"), Mapping) else {}

        if topic == PHOENIX_TOPIC and event == HEARTBEAT:
            return [reply(PHOENIX_TOPIC, ref, "ok")]
        if topic != self.topic:
            return [reply(str(topic), ref, "error", {"reason": "unmatched topic"})]

        if event == JOIN:
            return self._join(payload, ref)
        if not self.joined:
            return [reply(self.topic, ref, "error", {"reason": "unmatched topic"})]
        if event == BOUNDS_CHANGED:
            return self._bounds_changed(payload)
        if event == REFRESH_CLUSTERS:
            return self._refresh(ref)
        if event == LEAVE:
            self.joined = False
            self.closed = True
            return [reply(self.topic, ref, "ok"), message(self.topic, CLOSE, {}, ref)]
        return [reply(self.topic, ref, "error", {"reason": f"unknown event '{event}'"})]

    def _join(self, payload: Mapping[str, Any], ref: Optional[str]) -> List[Dict[str, Any]]:
        try:
            clusters = self.engine.cluster_payload(payload, self.default_categories)
        except ClusteringError as exc:
            LOGGER.info("join rejected: %s", exc)
            return [reply(self.topic, ref, "error", {"reason": str(exc)})]
        self.joined = True
        self.params = dict(payload)
        LOGGER.debug("joined %s with %d clusters", self.topic, len(clusters))
        return [reply(self.topic, ref, "ok", {"clusters": clusters, "cluster_count": len(clusters)})]

    def _bounds_changed(self, payload: Mapping[str, Any]) -> List[Dict[str, Any]]:
        try:
            clusters = self.engine.cluster_payload(payload, self.default_categories)
        except ClusteringError as exc:
            return [message(self.topic, CLUSTERING_ERROR, {"reason": str(exc)})]
        self.params = dict(payload)
        return [message(self.topic, CLUSTERS_UPDATED, clusters_payload(clusters, BOUNDS_CHANGED))]

    def _refresh(self, ref: Optional[str]) -> List[Dict[str, Any]]:
        try:
            clusters = self.engine.cluster_payload(self.params, self.default_categories)
        except ClusteringError as exc:
            return [reply(self.topic, ref, "error", {"reason": str(exc)})]
        return [
            reply(self.topic, ref, "ok"),
            message(self.topic, CLUSTERS_UPDATED, clusters_payload(clusters, "refresh")),
        ]
