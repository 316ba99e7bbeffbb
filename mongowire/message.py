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

"""Tools for creating `messages
<https://www.mongodb.com/docs/manual/legacy-opcodes/>`_ to be sent to
MongoDB, and for parsing its replies.

.. note:: This module is for internal use and is generally not needed by
   application developers.
"""
from __future__ import annotations

import struct
from typing import Any, Iterable, Mapping, Optional, Union

import bson
from bson.codec_options import DEFAULT_CODEC_OPTIONS, CodecOptions
from bson.errors import InvalidBSON, InvalidStringData

from mongowire.errors import (
    CursorError,
    CursorNotFound,
    InvalidOperation,
    ProtocolError,
    QueryFailure,
)

OP_REPLY = 1
OP_UPDATE = 2001
OP_INSERT = 2002
OP_QUERY = 2004
OP_GET_MORE = 2005
OP_DELETE = 2006
OP_KILL_CURSORS = 2007

# OP_INSERT flags.
_INSERT_CONTINUE_ON_ERROR = 1

# OP_UPDATE flags.
_UPDATE_UPSERT = 1
_UPDATE_MULTI = 2

# OP_DELETE flags.
_DELETE_SINGLE_REMOVE = 1

# OP_QUERY flags.
_QUERY_OPTIONS = {
    "tailable_cursor": 2,
    "slave_okay": 4,
    "oplog_replay": 8,
    "no_timeout": 16,
    "await_data": 32,
    "exhaust": 64,
    "partial": 128,
}

# OP_REPLY responseFlags.
_REPLY_CURSOR_NOT_FOUND = 1
_REPLY_QUERY_FAILURE = 2
_REPLY_SHARD_CONFIG_STALE = 4
_REPLY_AWAIT_CAPABLE = 8

_HEADER = struct.Struct("<iIIi")
_UNPACK_HEADER = _HEADER.unpack
_HEADER_SIZE = _HEADER.size
# Standard header plus responseFlags, cursorID, startingFrom, numberReturned.
_REPLY_HEADER_SIZE = _HEADER_SIZE + 20

_ZERO_32 = b"\x00\x00\x00\x00"

_pack_int = struct.Struct("<i").pack
_pack_int_into = struct.Struct("<i").pack_into
_pack_long_long = struct.Struct("<q").pack

_Document = Mapping[str, Any]


def _make_c_string(string: str) -> bytes:
    """Make a 'C' string: UTF-8 bytes followed by a single NUL."""
    data = string.encode("utf-8")
    if b"\x00" in data:
        raise InvalidStringData(f"namespace {string!r} must not contain a NUL character")
    return data + b"\x00"


class _MessageWriter:
    """A growable buffer holding one wire protocol message.

    The messageLength slot of the header is written as a placeholder and
    patched by :meth:`finish`, once the body is complete.
    """

    __slots__ = ("_buf", "_opts", "request_id", "op_code")

    def __init__(
        self, request_id: int, op_code: int, opts: CodecOptions = DEFAULT_CODEC_OPTIONS
    ) -> None:
        self.request_id = request_id
        self.op_code = op_code
        self._opts = opts
        self._buf = bytearray(_HEADER_SIZE)
        # messageLength is unknown until the body is written.
        _HEADER.pack_into(self._buf, 0, 0, request_id, 0, op_code)

    def __len__(self) -> int:
        return len(self._buf)

    def write_int32(self, value: int) -> None:
        self._buf += _pack_int(value)

    def write_int64(self, value: int) -> None:
        self._buf += _pack_long_long(value)

    def write_cstring(self, value: str) -> None:
        self._buf += _make_c_string(value)

    def write_document(self, document: _Document) -> int:
        """Encode `document` with the document codec and append it.

        Returns the encoded size.
        """
        encoded = bson.encode(document, codec_options=self._opts)
        self._buf += encoded
        return len(encoded)

    def finish(self) -> bytes:
        """Patch messageLength and return the complete message."""
        _pack_int_into(self._buf, 0, len(self._buf))
        return bytes(self._buf)


def _insert(
    request_id: int,
    collection_name: str,
    docs: Iterable[_Document],
    continue_on_error: bool,
    opts: CodecOptions,
) -> _MessageWriter:
    """Get an OP_INSERT message."""
    flags = _INSERT_CONTINUE_ON_ERROR if continue_on_error else 0
    msg = _MessageWriter(request_id, OP_INSERT, opts)
    msg.write_int32(flags)
    msg.write_cstring(collection_name)
    count = 0
    for doc in docs:
        msg.write_document(doc)
        count += 1
    if not count:
        raise InvalidOperation("cannot do an empty bulk insert")
    return msg


def _update(
    request_id: int,
    collection_name: str,
    spec: _Document,
    doc: _Document,
    upsert: bool,
    multi: bool,
    opts: CodecOptions,
) -> _MessageWriter:
    """Get an OP_UPDATE message.

    The selector precedes the update document, as the wire protocol
    defines it.
    """
    flags = 0
    if upsert:
        flags |= _UPDATE_UPSERT
    if multi:
        flags |= _UPDATE_MULTI
    msg = _MessageWriter(request_id, OP_UPDATE, opts)
    msg.write_int32(0)
    msg.write_cstring(collection_name)
    msg.write_int32(flags)
    msg.write_document(spec)
    msg.write_document(doc)
    return msg


def _delete(
    request_id: int,
    collection_name: str,
    spec: _Document,
    single_remove: bool,
    opts: CodecOptions,
) -> _MessageWriter:
    """Get an OP_DELETE message."""
    msg = _MessageWriter(request_id, OP_DELETE, opts)
    msg.write_int32(0)
    msg.write_cstring(collection_name)
    msg.write_int32(_DELETE_SINGLE_REMOVE if single_remove else 0)
    msg.write_document(spec)
    return msg


def _query(
    request_id: int,
    options: int,
    collection_name: str,
    num_to_skip: int,
    num_to_return: int,
    query: _Document,
    field_selector: Optional[_Document],
    opts: CodecOptions,
) -> _MessageWriter:
    """Get an OP_QUERY message."""
    msg = _MessageWriter(request_id, OP_QUERY, opts)
    msg.write_int32(options)
    msg.write_cstring(collection_name)
    msg.write_int32(num_to_skip)
    msg.write_int32(num_to_return)
    msg.write_document(query)
    if field_selector is not None:
        msg.write_document(field_selector)
    return msg


def _get_more(
    request_id: int, collection_name: str, num_to_return: int, cursor_id: int
) -> _MessageWriter:
    """Get an OP_GET_MORE message."""
    msg = _MessageWriter(request_id, OP_GET_MORE)
    msg.write_int32(0)
    msg.write_cstring(collection_name)
    msg.write_int32(num_to_return)
    msg.write_int64(cursor_id)
    return msg


def _kill_cursors(request_id: int, cursor_ids: Iterable[int]) -> _MessageWriter:
    """Get an OP_KILL_CURSORS message."""
    cursor_ids = list(cursor_ids)
    msg = _MessageWriter(request_id, OP_KILL_CURSORS)
    msg.write_int32(0)
    msg.write_int32(len(cursor_ids))
    for cursor_id in cursor_ids:
        msg.write_int64(cursor_id)
    return msg


class _OpReply:
    """A MongoDB OP_REPLY response message."""

    __slots__ = ("flags", "cursor_id", "starting_from", "number_returned", "documents")

    UNPACK_FROM = struct.Struct("<Iqii").unpack_from
    OP_CODE = OP_REPLY

    def __init__(
        self,
        flags: int,
        cursor_id: int,
        starting_from: int,
        number_returned: int,
        documents: Union[bytes, memoryview],
    ):
        self.flags = flags
        self.cursor_id = cursor_id
        self.starting_from = starting_from
        self.number_returned = number_returned
        self.documents = documents

    @classmethod
    def unpack(cls, msg: Union[bytes, memoryview]) -> _OpReply:
        """Construct an _OpReply from the bytes following the standard
        message header.
        """
        flags, cursor_id, starting_from, number_returned = cls.UNPACK_FROM(msg)
        if number_returned < 0:
            raise ProtocolError(f"Reply numberReturned ({number_returned!r}) is negative")
        documents = msg[20:]
        return cls(flags, cursor_id, starting_from, number_returned, documents)


def _reply_failure(
    flags: int,
    documents: Union[bytes, memoryview],
    cursor_id: int,
    opts: CodecOptions = DEFAULT_CODEC_OPTIONS,
) -> Optional[CursorError]:
    """Check the responseFlags of a reply without decoding its results.

    Returns the CursorNotFound or QueryFailure the flags describe, or None.

    :param cursor_id: cursor_id we sent to get this response -
        used for raising an informative exception when we get cursor id not
        valid at server response.
    """
    if flags & _REPLY_CURSOR_NOT_FOUND:
        return CursorNotFound(f"cursor not found, cursor id: {cursor_id}", cursor_id)
    if flags & _REPLY_QUERY_FAILURE:
        try:
            docs = bson.decode_all(bytes(documents), opts)
        except (InvalidBSON, ValueError):
            return QueryFailure("query failure")
        if docs:
            error_object = docs[0]
            errmsg = error_object.get("$err")
            if isinstance(errmsg, str):
                return QueryFailure(errmsg, error_object.get("code"), error_object)
            return QueryFailure("query failure", error_object.get("code"), error_object)
        return QueryFailure("query failure")
    return None
