"""Protobuf messages exchanged with the Osprey server.

Exports the message classes (:class:`LoginResponse`,
:class:`ClusterInfoResponse` and their parts) and the helpers that turn an
HTTP response into a message or an :class:`~osprey.exceptions.OspreyError`.
"""

from osprey.pb.messages import (
    Cluster,
    ClusterInfoResponse,
    LoginResponse,
    Provider,
    User,
    consume_cluster_info_response,
    consume_login_response,
    handle_error_response,
)

__all__ = [
    "Cluster",
    "ClusterInfoResponse",
    "LoginResponse",
    "Provider",
    "User",
    "consume_cluster_info_response",
    "consume_login_response",
    "handle_error_response",
]
