# Copyright 2009-present MongoDB, Inc.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
# http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Low level connection to MongoDB over the legacy wire protocol.

A :class:`Connection` owns one socket. Any number of cursors may be open on
it at once; their replies are matched to them by request id. A connection is
not thread safe: callers must serialize access to it.

.. doctest::

  >>> from mongowire import dial
  >>> conn = dial("localhost")
  >>> conn.insert("test.things", {"x": 1})
  >>> for doc in conn.find("test.things", {"x": 1}):
  ...     print(doc["x"])
  1
  >>> conn.close()
"""
from __future__ import annotations

import socket
from typing import Any, Iterable, Mapping, Optional, Union

from mongowire import message, network
from mongowire.common import validate_int32, validate_non_negative_int32
from mongowire.connection_options import ConnectionOptions
from mongowire.cursor import Cursor, CursorType
from mongowire.errors import (
    ConnectionFailure,
    InvalidOperation,
    MongoWireError,
    NetworkTimeout,
    ProtocolError,
)
from mongowire.logger import _CONNECTION_LOGGER, _debug_log, _WireStatusMessage
from mongowire.message import _QUERY_OPTIONS
from mongowire.uri_parser import _Address, parse_host

_MAX_REQUEST_ID = 0xFFFFFFFF

_OP_NAMES = {
    message.OP_UPDATE: "update",
    message.OP_INSERT: "insert",
    message.OP_QUERY: "query",
    message.OP_GET_MORE: "getMore",
    message.OP_DELETE: "delete",
    message.OP_KILL_CURSORS: "killCursors",
}


def _connection_failure(address: Optional[_Address], error: OSError) -> ConnectionFailure:
    """Convert a socket.error to ConnectionFailure."""
    if address is not None:
        host, port = address
        msg = "%s:%d: %s" % (host, port, error)
    else:
        msg = str(error)
    exc: ConnectionFailure
    if isinstance(error, socket.timeout):
        exc = NetworkTimeout(msg)
    else:
        exc = ConnectionFailure(msg)
    exc.__cause__ = error
    return exc


def _create_connection(address: _Address, connect_timeout: Optional[float]) -> socket.socket:
    """Given (host, port), connect and return a raw socket object.

    Can raise socket.error.
    """
    host, port = address

    # Don't try IPv6 if we don't support it. Also skip it if host
    # is 'localhost' (::1 is fine).
    family = socket.AF_INET
    if socket.has_ipv6 and host != "localhost":
        family = socket.AF_UNSPEC

    err = None
    for res in socket.getaddrinfo(host, port, family, socket.SOCK_STREAM):
        af, socktype, proto, dummy, sa = res
        sock = socket.socket(af, socktype, proto)
        try:
            sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
            sock.settimeout(connect_timeout)
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_KEEPALIVE, True)
            sock.connect(sa)
            return sock
        except OSError as e:
            err = e
            sock.close()

    if err is not None:
        raise err
    else:
        # This likely means we tried to connect to an IPv6 only
        # host with an OS/kernel or Python interpreter that doesn't
        # support IPv6.
        raise OSError("getaddrinfo failed")


def _fields_list_to_dict(fields: Iterable[str], option_name: str) -> dict[str, int]:
    """Takes a sequence of field names and returns a matching dictionary.

    ["a", "b"] becomes {"a": 1, "b": 1}
    """
    as_dict = {}
    for field in fields:
        if not isinstance(field, str):
            raise TypeError(f"{option_name} must be a list of key names, each an instance of str")
        as_dict[field] = 1
    return as_dict


def _check_namespace(namespace: Any) -> None:
    if not isinstance(namespace, str):
        raise TypeError("namespace must be an instance of str")
    if not namespace:
        raise ValueError("namespace must not be empty")


def _check_document(option: str, value: Any) -> None:
    if not isinstance(value, Mapping):
        raise TypeError(f"{option} must be an instance of dict, bson.son.SON, or any other "
                        "type that inherits from collections.abc.Mapping")


class Connection:
    """A connection to one MongoDB server speaking the legacy wire protocol.

    Use :func:`dial` to open one. Every operation raises the connection's
    latched error, without touching the network, once a fatal error has
    occurred or the connection has been closed.
    """

    def __init__(
        self, sock: socket.socket, address: Optional[_Address] = None, **kwargs: Any
    ) -> None:
        """Wrap an already connected socket.

        The connection takes ownership of `sock` and closes it exactly once.

        :param sock: a connected stream socket
        :param address: the (host, port) `sock` is connected to, used in
            error messages
        :param kwargs: connection options, see
            :class:`~mongowire.connection_options.ConnectionOptions`
        """
        self.__options = ConnectionOptions(kwargs)
        self.__sock: Optional[socket.socket] = sock
        self.__address = address
        self.__request_id = 0
        # Outstanding request id -> the cursor awaiting its reply.
        self.__cursors: dict[int, Cursor] = {}
        self.__error: Optional[MongoWireError] = None

        sock.settimeout(self.__options.socket_timeout)
        _debug_log(
            _CONNECTION_LOGGER,
            message=_WireStatusMessage.CONNECTION_OPENED,
            address=self.__address,
        )

    @property
    def address(self) -> Optional[_Address]:
        """The (host, port) of the server, or ``None`` if unknown."""
        return self.__address

    @property
    def options(self) -> ConnectionOptions:
        """The options used to configure this connection."""
        return self.__options

    @property
    def error(self) -> Optional[MongoWireError]:
        """The error latched on this connection, or ``None``."""
        return self.__error

    @property
    def closed(self) -> bool:
        """``True`` once the socket has been closed."""
        return self.__sock is None

    def _next_request_id(self) -> int:
        # 0 is reserved for "no outstanding request".
        self.__request_id = (self.__request_id + 1) & _MAX_REQUEST_ID
        if not self.__request_id:
            self.__request_id = 1
        return self.__request_id

    def __check_okay(self) -> None:
        if self.__error is not None:
            raise self.__error

    def __close_socket(self) -> None:
        if self.__sock is not None:
            sock, self.__sock = self.__sock, None
            sock.close()
            _debug_log(
                _CONNECTION_LOGGER,
                message=_WireStatusMessage.CONNECTION_CLOSED,
                address=self.__address,
            )

    def _fatal(self, exc: MongoWireError) -> MongoWireError:
        """Latch `exc` unless an error is already latched, and close.

        Returns the latched error.
        """
        if self.__error is None:
            self.__error = exc
            _debug_log(
                _CONNECTION_LOGGER,
                message=_WireStatusMessage.CONNECTION_FAILED,
                address=self.__address,
                failure=str(exc),
                errorType=type(exc).__name__,
            )
            self.__close_socket()
            self.__cursors.clear()
        return self.__error

    def _send(self, msg: message._MessageWriter, **fields: Any) -> None:
        """Patch the message length and write the whole message."""
        self.__check_okay()
        data = msg.finish()
        assert self.__sock is not None
        try:
            network.sendall(self.__sock, data)
        except OSError as exc:
            raise self._fatal(_connection_failure(self.__address, exc)) from exc
        _debug_log(
            _CONNECTION_LOGGER,
            message=_WireStatusMessage.MESSAGE_SENT,
            opName=_OP_NAMES.get(msg.op_code, msg.op_code),
            requestId=msg.request_id,
            messageLength=len(data),
            **fields,
        )

    def _register(self, request_id: int, cursor: Cursor) -> None:
        self.__cursors[request_id] = cursor

    def _deregister(self, request_id: int) -> None:
        self.__cursors.pop(request_id, None)

    def _receive(self) -> None:
        """Read one reply and deliver it to the cursor awaiting it.

        A reply nobody awaits that names a live server cursor causes that
        cursor to be killed, since no one will ever fetch from it.
        """
        self.__check_okay()
        assert self.__sock is not None
        try:
            request_id, response_to, reply = network.receive_message(
                self.__sock, self.__options.max_message_size
            )
        except ProtocolError as exc:
            raise self._fatal(exc) from None
        except OSError as exc:
            raise self._fatal(_connection_failure(self.__address, exc)) from exc

        cursor = self.__cursors.pop(response_to, None)
        if cursor is None:
            _debug_log(
                _CONNECTION_LOGGER,
                message=_WireStatusMessage.REPLY_ORPHANED,
                responseTo=response_to,
                cursorId=reply.cursor_id,
            )
            if reply.cursor_id:
                self._kill_cursors([reply.cursor_id])
            return

        _debug_log(
            _CONNECTION_LOGGER,
            message=_WireStatusMessage.REPLY_RECEIVED,
            requestId=request_id,
            responseTo=response_to,
            cursorId=reply.cursor_id,
            numberReturned=reply.number_returned,
            responseFlags=reply.flags,
            awaitCapable=bool(reply.flags & message._REPLY_AWAIT_CAPABLE),
            shardConfigStale=bool(reply.flags & message._REPLY_SHARD_CONFIG_STALE),
        )
        pinned = cursor._on_reply(request_id, reply)
        if pinned:
            self.__cursors[pinned] = cursor

    def insert(
        self,
        namespace: str,
        *documents: Mapping[str, Any],
        continue_on_error: bool = False,
    ) -> None:
        """Insert one or more documents into `namespace`.

        The write is unacknowledged: the message is sent and no reply is
        read.

        :param namespace: the full collection name, ``"db.collection"``
        :param documents: the documents to insert, in order
        :param continue_on_error: ask the server to keep inserting the
            remaining documents after one fails
        """
        self.__check_okay()
        _check_namespace(namespace)
        for doc in documents:
            _check_document("document", doc)
        msg = message._insert(
            self._next_request_id(),
            namespace,
            documents,
            continue_on_error,
            self.__options.codec_options,
        )
        self._send(msg, namespace=namespace)

    def update(
        self,
        namespace: str,
        document: Mapping[str, Any],
        selector: Mapping[str, Any],
        upsert: bool = False,
        multi: bool = False,
    ) -> None:
        """Update documents in `namespace` matching `selector`.

        The write is unacknowledged.

        :param namespace: the full collection name, ``"db.collection"``
        :param document: the replacement document or update operators
        :param selector: a query selecting the documents to update
        :param upsert: insert `document` if nothing matches
        :param multi: update every matching document, not just the first
        """
        self.__check_okay()
        _check_namespace(namespace)
        _check_document("document", document)
        _check_document("selector", selector)
        msg = message._update(
            self._next_request_id(),
            namespace,
            selector,
            document,
            upsert,
            multi,
            self.__options.codec_options,
        )
        self._send(msg, namespace=namespace)

    def remove(self, namespace: str, selector: Mapping[str, Any], single: bool = False) -> None:
        """Remove documents in `namespace` matching `selector`.

        The write is unacknowledged.

        :param single: remove at most one matching document
        """
        self.__check_okay()
        _check_namespace(namespace)
        _check_document("selector", selector)
        msg = message._delete(
            self._next_request_id(),
            namespace,
            selector,
            single,
            self.__options.codec_options,
        )
        self._send(msg, namespace=namespace)

    def find(
        self,
        namespace: str,
        query: Optional[Mapping[str, Any]] = None,
        projection: Optional[Union[Mapping[str, Any], Iterable[str]]] = None,
        skip: int = 0,
        limit: int = 0,
        batch_size: int = 0,
        cursor_type: int = CursorType.NON_TAILABLE,
        tailable: bool = False,
        slave_okay: bool = False,
        no_cursor_timeout: bool = False,
        await_data: bool = False,
        exhaust: bool = False,
        oplog_replay: bool = False,
        partial: bool = False,
    ) -> Cursor:
        """Query `namespace` and return a :class:`~mongowire.cursor.Cursor`.

        The query is sent immediately but no reply is read until the cursor
        is first used.

        :param namespace: the full collection name, ``"db.collection"``
        :param query: a query document, ``{}`` if omitted
        :param projection: a document or a list of field names selecting the
            fields to return
        :param skip: the number of matching documents to skip
        :param limit: the maximum number of documents to return, 0 for no
            limit; a negative limit asks for a single batch
        :param batch_size: the number of documents per batch, 0 lets the
            server decide
        :param cursor_type: one of the :class:`~mongowire.cursor.CursorType`
            values, combined with the boolean flags below
        :param tailable: keep the cursor open on a capped collection after
            the last document
        :param slave_okay: allow the query to run on a secondary
        :param no_cursor_timeout: keep the server cursor from timing out
        :param await_data: with `tailable`, block briefly on the server for
            new data
        :param exhaust: stream every batch without getMore round trips
        :param oplog_replay: internal replication option
        :param partial: return partial results from a sharded cluster when
            some shards are down
        """
        self.__check_okay()
        _check_namespace(namespace)
        if query is None:
            query = {}
        _check_document("query", query)
        if projection is not None and not isinstance(projection, Mapping):
            projection = _fields_list_to_dict(projection, "projection")
        skip = validate_non_negative_int32("skip", skip)
        if not isinstance(limit, int) or isinstance(limit, bool):
            raise TypeError("limit must be an instance of int")
        limit = validate_int32("limit", limit)
        batch_size = validate_non_negative_int32("batch_size", batch_size)
        # The server treats a numberToReturn of 1 as -1.
        if batch_size == 1:
            batch_size = 2

        flags = cursor_type
        if tailable:
            flags |= _QUERY_OPTIONS["tailable_cursor"]
        if slave_okay:
            flags |= _QUERY_OPTIONS["slave_okay"]
        if oplog_replay:
            flags |= _QUERY_OPTIONS["oplog_replay"]
        if no_cursor_timeout:
            flags |= _QUERY_OPTIONS["no_timeout"]
        if await_data:
            flags |= _QUERY_OPTIONS["await_data"]
        if exhaust:
            flags |= _QUERY_OPTIONS["exhaust"]
        if partial:
            flags |= _QUERY_OPTIONS["partial"]

        if limit and batch_size:
            num_to_return = min(abs(limit), batch_size)
            if limit < 0:
                num_to_return = -num_to_return
        else:
            num_to_return = limit or batch_size

        request_id = self._next_request_id()
        msg = message._query(
            request_id,
            flags,
            namespace,
            skip,
            num_to_return,
            query,
            projection,
            self.__options.codec_options,
        )
        self._send(msg, namespace=namespace, query=query, projection=projection)

        cursor = Cursor(
            self,
            namespace,
            request_id,
            flags,
            limit,
            batch_size,
            self.__options.codec_options,
        )
        self._register(request_id, cursor)
        return cursor

    def _get_more(self, namespace: str, num_to_return: int, cursor_id: int) -> int:
        """Send an OP_GET_MORE and return its request id."""
        request_id = self._next_request_id()
        self._send(
            message._get_more(request_id, namespace, num_to_return, cursor_id),
            namespace=namespace,
            cursorId=cursor_id,
        )
        return request_id

    def _kill_cursors(self, cursor_ids: Iterable[int]) -> None:
        """Send an OP_KILL_CURSORS, best-effort.

        A failure to send is latched on this connection by :meth:`_send` but
        never raised: killing cursors is advisory cleanup.
        """
        cursor_ids = list(cursor_ids)
        try:
            self._send(
                message._kill_cursors(self._next_request_id(), cursor_ids),
                cursorIds=cursor_ids,
            )
        except MongoWireError as exc:
            _debug_log(
                _CONNECTION_LOGGER,
                message=_WireStatusMessage.CURSORS_KILLED,
                cursorIds=cursor_ids,
                failure=str(exc),
            )
        else:
            _debug_log(
                _CONNECTION_LOGGER,
                message=_WireStatusMessage.CURSORS_KILLED,
                cursorIds=cursor_ids,
            )

    def close(self) -> None:
        """Close the socket.

        Every later operation on this connection, and on cursors still
        waiting for replies, raises :class:`~mongowire.errors.InvalidOperation`.
        Calling close() more than once is allowed.
        """
        if self.__error is None:
            self.__error = InvalidOperation("connection closed")
        self.__close_socket()
        self.__cursors.clear()

    def __enter__(self) -> Connection:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    def __repr__(self) -> str:
        if self.__address is None:
            return "Connection()"
        return "Connection(%r, %r)" % self.__address


def dial(address: str, **kwargs: Any) -> Connection:
    """Connect to the server at `address` and return a :class:`Connection`.

    :param address: ``"host"``, ``"host:port"``, ``"[ipv6]"`` or
        ``"[ipv6]:port"``; the port defaults to 27017
    :param kwargs: connection options, see
        :class:`~mongowire.connection_options.ConnectionOptions`

    Raises :class:`~mongowire.errors.ConnectionFailure` if the connection
    cannot be made.
    """
    if not isinstance(address, str):
        raise TypeError("address must be an instance of str")
    host, port = parse_host(address)
    options = ConnectionOptions(kwargs)
    try:
        sock = _create_connection((host, port), options.connect_timeout)
    except OSError as exc:
        raise _connection_failure((host, port), exc) from exc
    return Connection(sock, (host, port), **kwargs)
