# Copyright 2015-present MongoDB, Inc.
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

"""Internal network layer helper methods."""
from __future__ import annotations

import errno
import socket
from typing import Optional

from mongowire.common import MAX_MESSAGE_SIZE
from mongowire.errors import ProtocolError
from mongowire.message import _REPLY_HEADER_SIZE, _UNPACK_HEADER, _OpReply


def sendall(sock: socket.socket, buf: bytes) -> None:
    sock.sendall(buf)


def receive_data(sock: socket.socket, length: int) -> memoryview:
    """Read exactly `length` bytes from `sock` or raise OSError."""
    buf = bytearray(length)
    mv = memoryview(buf)
    bytes_read = 0
    while bytes_read < length:
        try:
            chunk_length = sock.recv_into(mv[bytes_read:])
        except OSError as exc:
            if _errno_from_exception(exc) == errno.EINTR:
                continue
            raise
        if chunk_length == 0:
            raise OSError("connection closed")

        bytes_read += chunk_length

    return mv


def receive_message(
    sock: socket.socket, max_message_size: int = MAX_MESSAGE_SIZE
) -> tuple[int, int, _OpReply]:
    """Receive one OP_REPLY or raise socket.error.

    Returns the reply's requestID, its responseTo and the parsed reply.
    """
    length, request_id, response_to, op_code = _UNPACK_HEADER(receive_data(sock, 16))
    if length < _REPLY_HEADER_SIZE:
        raise ProtocolError(
            f"Message length ({length!r}) not longer than reply header size "
            f"({_REPLY_HEADER_SIZE})"
        )
    if length > max_message_size:
        raise ProtocolError(
            f"Message length ({length!r}) is larger than server max "
            f"message size ({max_message_size!r})"
        )
    data = receive_data(sock, length - 16)
    if op_code != _OpReply.OP_CODE:
        raise ProtocolError(f"Got opcode {op_code!r} but expected {_OpReply.OP_CODE!r}")
    return request_id, response_to, _OpReply.unpack(data)


def _errno_from_exception(exc: BaseException) -> Optional[int]:
    if hasattr(exc, "errno"):
        return exc.errno
    if exc.args:
        return exc.args[0]
    return None
