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

"""Cursor class to iterate over query results."""
from __future__ import annotations

import struct
import weakref
from collections import deque
from typing import TYPE_CHECKING, Any, Optional, Union

import bson
from bson.codec_options import CodecOptions

from mongowire.errors import EndOfResults, InvalidOperation, MongoWireError, ProtocolError
from mongowire.logger import _CURSOR_LOGGER, _debug_log, _WireStatusMessage
from mongowire.message import _QUERY_OPTIONS, _OpReply, _reply_failure

if TYPE_CHECKING:
    from mongowire.connection import Connection

_UNPACK_INT_FROM = struct.Struct("<i").unpack_from


class CursorType:
    NON_TAILABLE = 0
    """The standard cursor type."""

    TAILABLE = _QUERY_OPTIONS["tailable_cursor"]
    """The tailable cursor type.

    Tailable cursors are only for use with capped collections. They are not
    closed when the last data is retrieved but are kept open and the cursor
    location marks the final document position. If more data is received
    iteration of the cursor will continue from the last document received.
    """

    TAILABLE_AWAIT = TAILABLE | _QUERY_OPTIONS["await_data"]
    """A tailable cursor with the await option set.

    Creates a tailable cursor that will wait for a few seconds after returning
    the full result set so that it can capture and return additional data added
    during the query.
    """

    EXHAUST = _QUERY_OPTIONS["exhaust"]
    """An exhaust cursor.

    MongoDB will stream batched results to the client without waiting for the
    client to request each batch, reducing latency.
    """


class _ResponseBatch:
    """One OP_REPLY worth of undecoded documents, consumed front to back."""

    __slots__ = ("flags", "count", "data", "offset", "cursor_id")

    def __init__(
        self, flags: int, count: int, data: Union[bytes, memoryview], cursor_id: int
    ) -> None:
        self.flags = flags
        self.count = count
        self.data = data
        self.offset = 0
        # The server cursor id the request was sent for.
        self.cursor_id = cursor_id


class Cursor:
    """A cursor over the results of one query.

    Should not be called directly by application developers - see
    :meth:`~mongowire.connection.Connection.find` instead.

    A cursor reads nothing until it is first used. Batches are then
    fetched on demand, one getMore at a time, until the server reports no
    more results or the query's limit is reached. Replies for other cursors
    on the same connection that arrive first are handed to their owners.
    """

    def __init__(
        self,
        connection: Connection,
        namespace: str,
        request_id: int,
        query_flags: int,
        limit: int,
        batch_size: int,
        codec_options: CodecOptions,
    ) -> None:
        self.__connection = weakref.ref(connection)
        self.__namespace = namespace
        self.__request_id = request_id
        self.__id = 0
        self.__query_flags = query_flags
        # None means no limit.
        self.__remaining: Optional[int] = abs(limit) if limit else None
        self.__single_batch = limit < 0
        self.__batch_size = batch_size
        self.__codec_options = codec_options
        self.__data: deque[_ResponseBatch] = deque()
        self.__retrieved = 0
        self.__error: Optional[BaseException] = None

    @property
    def namespace(self) -> str:
        """The namespace (``"db.collection"``) this cursor reads from."""
        return self.__namespace

    @property
    def cursor_id(self) -> int:
        """The server cursor id, or 0 if the server holds no cursor."""
        return self.__id

    @property
    def retrieved(self) -> int:
        """The number of documents received from the server so far."""
        return self.__retrieved

    @property
    def alive(self) -> bool:
        """Does this cursor have the potential to return more data?

        ``False`` once the results are exhausted, the cursor is closed, or
        an error is latched.
        """
        return self.__error is None

    @property
    def error(self) -> Optional[BaseException]:
        """The error latched on this cursor, or ``None``.

        :class:`~mongowire.errors.EndOfResults` once the results are
        exhausted.
        """
        return self.__error

    def _on_reply(self, reply_request_id: int, reply: _OpReply) -> int:
        """Record a reply the connection routed to this cursor.

        Returns the request id this cursor now waits on: the reply's own
        requestID for an exhaust cursor with more batches to come, else 0.
        """
        sent_for = self.__id
        self.__request_id = 0
        self.__id = reply.cursor_id
        if self.__query_flags & _QUERY_OPTIONS["exhaust"] and reply.cursor_id:
            # The server streams the next batch in response to this reply.
            self.__request_id = reply_request_id
        count = reply.number_returned
        if self.__remaining is not None:
            # Never deliver past the limit, whatever the server sends.
            count = min(count, max(self.__remaining, 0))
            if self.__single_batch:
                self.__remaining = 0
            else:
                self.__remaining -= reply.number_returned
        self.__retrieved += reply.number_returned
        self.__data.append(_ResponseBatch(reply.flags, count, reply.documents, sent_for))
        return self.__request_id

    def __get_connection(self) -> Connection:
        connection = self.__connection()
        if connection is None:
            raise InvalidOperation("connection closed")
        return connection

    def __num_to_return(self) -> int:
        if self.__remaining is not None:
            if self.__batch_size:
                return min(self.__remaining, self.__batch_size)
            return self.__remaining
        return self.__batch_size

    def __die(self) -> None:
        """Release the server cursor and any registration, best-effort."""
        connection = self.__connection()
        if connection is not None:
            if self.__request_id:
                connection._deregister(self.__request_id)
            if self.__id:
                connection._kill_cursors([self.__id])
        self.__request_id = 0
        self.__id = 0
        self.__data.clear()

    def __fatal(self, exc: BaseException) -> BaseException:
        if self.__error is None:
            self.__die()
            self.__error = exc
            if not isinstance(exc, EndOfResults):
                _debug_log(
                    _CURSOR_LOGGER,
                    message=_WireStatusMessage.CURSOR_FAILED,
                    namespace=self.__namespace,
                    failure=str(exc),
                    errorType=type(exc).__name__,
                )
        return self.__error

    def _fill(self) -> Optional[BaseException]:
        """Make sure the front batch holds at least one undelivered document.

        Returns None on success, otherwise the error this cursor now holds.
        Blocks on the connection until this cursor's own reply arrives.
        """
        if self.__error is not None:
            return self.__error

        waited = False
        while True:
            while self.__data:
                batch = self.__data[0]
                failure = _reply_failure(
                    batch.flags, batch.data, batch.cursor_id, self.__codec_options
                )
                if failure is not None:
                    return self.__fatal(failure)
                if batch.count > 0:
                    return None
                self.__data.popleft()

            if self.__remaining is not None and self.__remaining <= 0:
                # Also stops an exhaust cursor still waiting on a streamed batch.
                return self.__fatal(EndOfResults())

            if (
                waited
                and self.__id
                and self.__query_flags & _QUERY_OPTIONS["tailable_cursor"]
            ):
                # An empty batch on a live tailable cursor: nothing new yet.
                return EndOfResults()

            try:
                connection = self.__get_connection()
                if not self.__request_id:
                    if not self.__id:
                        return self.__fatal(EndOfResults())
                    if not self.__query_flags & _QUERY_OPTIONS["exhaust"]:
                        self.__request_id = connection._get_more(
                            self.__namespace, self.__num_to_return(), self.__id
                        )
                        connection._register(self.__request_id, self)
                while not self.__data:
                    connection._receive()
            except MongoWireError as exc:
                return self.__fatal(exc)
            waited = True

    def has_next(self) -> bool:
        """Can :meth:`next` return a document?

        Returns ``False`` only when the results are exhausted. Any other
        error is not swallowed: it is available from :attr:`error` and is
        raised by the next call to :meth:`next`.
        """
        return not isinstance(self._fill(), EndOfResults)

    def next(self) -> Any:
        """Return the next document.

        Raises :class:`~mongowire.errors.EndOfResults` once exhausted, and
        keeps raising it on every later call.
        """
        exc = self._fill()
        if exc is not None:
            raise exc

        batch = self.__data[0]
        available = len(batch.data) - batch.offset
        if available < 4:
            raise self.__corrupted()
        length = _UNPACK_INT_FROM(batch.data, batch.offset)[0]
        if length < 5 or length > available:
            raise self.__corrupted()
        document = batch.data[batch.offset : batch.offset + length]
        batch.offset += length
        batch.count -= 1
        return bson.decode(bytes(document), self.__codec_options)

    __next__ = next

    def __corrupted(self) -> BaseException:
        exc = ProtocolError("response data corrupted")
        connection = self.__connection()
        if connection is not None:
            connection._fatal(exc)
        return self.__fatal(exc)

    def __iter__(self) -> Cursor:
        return self

    def __del__(self) -> None:
        if self.__error is None and self.__id:
            self.__die()

    def close(self) -> None:
        """Explicitly close / kill this cursor.

        Calling close() more than once is allowed.
        """
        if self.__error is not None:
            return
        self.__die()
        self.__error = InvalidOperation("cursor closed")

    def __enter__(self) -> Cursor:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"Cursor({self.__namespace!r}, cursor_id={self.__id!r})"
