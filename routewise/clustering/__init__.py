from routewise.clustering.engine import ClusterEngine, ClusterFilters, ClusteringError, Viewport, cluster_id
from routewise.clustering.subscription import ClusterSubscription, ServerError, SubscriptionState
from routewise.clustering.transport import LocalTransport, TransportError, WebSocketTransport

__all__ = [
    "ClusterEngine",
    "ClusterFilters",
    "ClusteringError",
    "ClusterSubscription",
    "LocalTransport",
    "ServerError",
    "SubscriptionState",
    "TransportError",
    "Viewport",
    "WebSocketTransport",
    "cluster_id",
]
