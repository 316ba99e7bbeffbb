# Copyright 2010-present MongoDB, Inc.
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

"""Test suite for mongowire.
"""
from __future__ import annotations

import socket
import struct
import unittest
from typing import Any, Optional

import bson

from mongowire import message
from mongowire.connection import Connection
from mongowire.network import receive_data

_UNPACK_INT = struct.Struct("<i").unpack_from
_UNPACK_LONG_LONG = struct.Struct("<q").unpack_from
_REPLY_PREFIX = struct.Struct("<Iqii")

# Seconds a test waits on a socket before giving up.
TEST_TIMEOUT = 5.0


def encode_docs(docs) -> bytes:
    return b"".join(bson.encode(doc) for doc in docs)


def make_reply(
    response_to: int,
    docs=(),
    cursor_id: int = 0,
    flags: int = 0,
    request_id: int = 0,
    starting_from: int = 0,
    number_returned: Optional[int] = None,
    payload: Optional[bytes] = None,
) -> bytes:
    """Build a complete OP_REPLY message.

    `payload` replaces the encoded `docs` when given, and `number_returned`
    overrides the document count, so tests can send malformed replies.
    """
    if payload is None:
        payload = encode_docs(docs)
    if number_returned is None:
        number_returned = len(docs)
    body = _REPLY_PREFIX.pack(flags, cursor_id, starting_from, number_returned) + payload
    header = message._HEADER.pack(16 + len(body), request_id, response_to, message.OP_REPLY)
    return header + body


def _read_cstring(data: bytes, pos: int) -> tuple[str, int]:
    end = data.index(b"\x00", pos)
    return data[pos:end].decode("utf-8"), end + 1


class Request:
    """A request message read back from the client and decoded."""

    def __init__(self, request_id: int, response_to: int, op_code: int, body: bytes) -> None:
        self.request_id = request_id
        self.response_to = response_to
        self.op_code = op_code
        self.body = body
        self.flags = 0
        self.namespace: Optional[str] = None
        self.docs: list[Any] = []
        self.num_to_skip = 0
        self.num_to_return = 0
        self.cursor_id = 0
        self.cursor_ids: list[int] = []
        self._decode()

    def _decode(self) -> None:
        body = self.body
        if self.op_code == message.OP_QUERY:
            self.flags = _UNPACK_INT(body, 0)[0]
            self.namespace, pos = _read_cstring(body, 4)
            self.num_to_skip, self.num_to_return = struct.unpack_from("<ii", body, pos)
            self.docs = bson.decode_all(body[pos + 8 :])
        elif self.op_code == message.OP_GET_MORE:
            self.namespace, pos = _read_cstring(body, 4)
            self.num_to_return = _UNPACK_INT(body, pos)[0]
            self.cursor_id = _UNPACK_LONG_LONG(body, pos + 4)[0]
        elif self.op_code == message.OP_INSERT:
            self.flags = _UNPACK_INT(body, 0)[0]
            self.namespace, pos = _read_cstring(body, 4)
            self.docs = bson.decode_all(body[pos:])
        elif self.op_code in (message.OP_UPDATE, message.OP_DELETE):
            self.namespace, pos = _read_cstring(body, 4)
            self.flags = _UNPACK_INT(body, pos)[0]
            self.docs = bson.decode_all(body[pos + 4 :])
        elif self.op_code == message.OP_KILL_CURSORS:
            count = _UNPACK_INT(body, 4)[0]
            self.cursor_ids = [_UNPACK_LONG_LONG(body, 8 + 8 * i)[0] for i in range(count)]

    @property
    def query(self) -> Any:
        return self.docs[0]

    @property
    def projection(self) -> Any:
        return self.docs[1] if len(self.docs) > 1 else None

    def __repr__(self) -> str:
        return f"Request(op_code={self.op_code!r}, request_id={self.request_id!r})"


def read_request(sock: socket.socket) -> Request:
    """Read one request message from the server end of a socket."""
    length, request_id, response_to, op_code = message._UNPACK_HEADER(receive_data(sock, 16))
    body = bytes(receive_data(sock, length - 16))
    return Request(request_id, response_to, op_code, body)


class MongoWireTestCase(unittest.TestCase):
    """A test case whose Connection talks to a scripted peer.

    `self.server` is the other end of a socket pair. Tests read the
    client's requests from it with :meth:`read` and write replies to it with
    :meth:`reply` before the client reads them.
    """

    connection_options: dict[str, Any] = {}

    def setUp(self) -> None:
        client_sock, self.server = socket.socketpair()
        self.server.settimeout(TEST_TIMEOUT)
        options = {"socketTimeoutMS": TEST_TIMEOUT * 1000}
        options.update(self.connection_options)
        self.conn = Connection(client_sock, ("localhost", 27017), **options)

    def tearDown(self) -> None:
        self.conn.close()
        self.server.close()

    def read(self, op_code: Optional[int] = None) -> Request:
        request = read_request(self.server)
        if op_code is not None:
            self.assertEqual(op_code, request.op_code)
        return request

    def reply(self, response_to: int, docs=(), **kwargs: Any) -> None:
        self.server.sendall(make_reply(response_to, docs, **kwargs))

    def assertNoRequest(self) -> None:
        self.server.settimeout(0.05)
        try:
            self.assertRaises(socket.timeout, self.server.recv, 1)
        finally:
            self.server.settimeout(TEST_TIMEOUT)
