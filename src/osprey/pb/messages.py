"""Osprey wire messages and HTTP response decoding.

The messages are declared as a ``FileDescriptorProto`` and materialised
into a private descriptor pool at import time::

    message Cluster  { string name = 1; string api_server_url = 2; string api_server_ca = 3; }
    message User     { string username = 1; string token = 2; }
    message Provider { string client_id = 1; string client_secret = 2;
                       string issuer_url = 3; string issuer_ca = 4; }
    message LoginResponse       { Cluster cluster = 1; User user = 2; Provider provider = 3; }
    message ClusterInfoResponse { Cluster cluster = 1; }

Error bodies are either a serialised ``google.rpc.Status`` (when the server
answers ``application/octet-stream``) or an HTML page.
"""

from __future__ import annotations

import httpx
from google.protobuf import descriptor_pb2, descriptor_pool, message_factory
from google.protobuf.message import DecodeError
from google.rpc import code_pb2, status_pb2

from osprey.exceptions import AuthError, ProtocolError, UnauthenticatedError
from osprey.web import html_to_text

_PACKAGE = "pb"
_STRING = descriptor_pb2.FieldDescriptorProto.TYPE_STRING
_MESSAGE = descriptor_pb2.FieldDescriptorProto.TYPE_MESSAGE
_OPTIONAL = descriptor_pb2.FieldDescriptorProto.LABEL_OPTIONAL

OCTET_STREAM = "application/octet-stream"

_MESSAGES = {
    "Cluster": [("name", _STRING, None), ("api_server_url", _STRING, None), ("api_server_ca", _STRING, None)],
    "User": [("username", _STRING, None), ("token", _STRING, None)],
    "Provider": [
        ("client_id", _STRING, None),
        ("client_secret", _STRING, None),
        ("issuer_url", _STRING, None),
        ("issuer_ca", _STRING, None),
    ],
    "LoginResponse": [("cluster", _MESSAGE, "Cluster"), ("user", _MESSAGE, "User"), ("provider", _MESSAGE, "Provider")],
    "ClusterInfoResponse": [("cluster", _MESSAGE, "Cluster")],
}


def _file_descriptor() -> descriptor_pb2.FileDescriptorProto:
    proto = descriptor_pb2.FileDescriptorProto(
        name="osprey/pb/osprey.proto",
        package=_PACKAGE,
        syntax="proto3",
    )
    for message_name, fields in _MESSAGES.items():
        message = proto.message_type.add(name=message_name)
        for number, (field_name, field_type, type_name) in enumerate(fields, start=1):
            field = message.field.add(name=field_name, number=number, type=field_type, label=_OPTIONAL)
            if type_name:
                field.type_name = f".{_PACKAGE}.{type_name}"
    return proto


_POOL = descriptor_pool.DescriptorPool()
_POOL.AddSerializedFile(_file_descriptor().SerializeToString())


def _message_class(name: str):
    return message_factory.GetMessageClass(_POOL.FindMessageTypeByName(f"{_PACKAGE}.{name}"))


Cluster = _message_class("Cluster")
User = _message_class("User")
Provider = _message_class("Provider")
LoginResponse = _message_class("LoginResponse")
ClusterInfoResponse = _message_class("ClusterInfoResponse")


def _parse(message_cls, data: bytes):
    message = message_cls()
    try:
        message.ParseFromString(data)
    except DecodeError as exc:
        raise ProtocolError(f"failed to parse response: {exc}") from exc
    return message


def consume_login_response(response: httpx.Response):
    """Decode a ``POST /access-token`` response into a :data:`LoginResponse`.

    Raises:
        UnauthenticatedError: If the server rejected the credentials.
        AuthError: For any other ``google.rpc.Status`` error.
        ProtocolError: If the body cannot be decoded.
    """
    if response.status_code == httpx.codes.OK:
        return _parse(LoginResponse, response.content)
    raise handle_error_response(response)


def consume_cluster_info_response(response: httpx.Response):
    """Decode a ``GET /cluster-info`` response into a :data:`ClusterInfoResponse`."""
    if response.status_code == httpx.codes.OK:
        return _parse(ClusterInfoResponse, response.content)
    raise handle_error_response(response)


def handle_error_response(response: httpx.Response) -> Exception:
    """Convert a failed Osprey response into the matching exception.

    The exception is returned, not raised, so callers can chain it.
    """
    content_type = response.headers.get("content-type", "").split(";", 1)[0].strip()
    if content_type == OCTET_STREAM:
        status = status_pb2.Status()
        try:
            status.ParseFromString(response.content)
        except DecodeError as exc:
            return ProtocolError(f"failed to parse pb error response: {exc}")
        code_name = code_pb2.Code.Name(status.code) if status.code in code_pb2.Code.values() else str(status.code)
        message = f"rpc error: code = {code_name} desc = {status.message}"
        if status.code == code_pb2.UNAUTHENTICATED:
            return UnauthenticatedError(message)
        return AuthError(message)
    text = html_to_text(response.text)
    return ProtocolError(f"{response.status_code} {response.reason_phrase}\n{text}".rstrip())
