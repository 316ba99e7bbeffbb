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

"""Exceptions raised by mongowire."""
from __future__ import annotations

from typing import Any, Mapping, Optional


class MongoWireError(Exception):
    """Base class for all mongowire exceptions."""

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self._message = message

    @property
    def timeout(self) -> bool:
        """True if this error was caused by a timeout."""
        return False


class ConfigurationError(MongoWireError):
    """Raised when something is incorrectly configured."""


class ConnectionFailure(MongoWireError):
    """Raised when a connection to the database cannot be made or is lost.

    A connection failure is fatal: the connection latches it and raises the
    same instance from every later operation.
    """


class NetworkTimeout(ConnectionFailure):
    """A read or write on an open connection exceeded socketTimeoutMS.

    Subclass of :exc:`~mongowire.errors.ConnectionFailure`.
    """

    @property
    def timeout(self) -> bool:
        return True


class ProtocolError(MongoWireError):
    """Raised for failures related to the wire protocol.

    An unexpected reply opcode, a bad message length or a document length
    that overruns its reply all leave the stream unusable, so this error is
    fatal to the connection.
    """


class InvalidOperation(MongoWireError):
    """Raised when a client attempts to perform an invalid operation, such
    as using a connection or cursor after it has been closed.
    """


class CursorError(MongoWireError):
    """Raised when the server reports a failure for one cursor.

    Fatal to that cursor only; the connection and its other cursors remain
    usable.
    """


class CursorNotFound(CursorError):
    """Raised while iterating query results if the cursor is
    invalidated on the server.
    """

    def __init__(self, message: str, cursor_id: int) -> None:
        super().__init__(message)
        self.__cursor_id = cursor_id

    @property
    def cursor_id(self) -> int:
        """The server cursor id the getMore was sent for."""
        return self.__cursor_id


class QueryFailure(CursorError):
    """Raised when the server sets the QueryFailure bit on a reply.

    The message is the server's ``$err`` string when the error document
    carries one.
    """

    def __init__(
        self,
        message: str,
        code: Optional[int] = None,
        details: Optional[Mapping[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.__code = code
        self.__details = details

    @property
    def code(self) -> Optional[int]:
        """The error code returned by the server, if any."""
        return self.__code

    @property
    def details(self) -> Optional[Mapping[str, Any]]:
        """The complete error document returned by the server.

        ``None`` when the reply body could not be decoded.
        """
        return self.__details


class EndOfResults(StopIteration):
    """Raised by :meth:`~mongowire.cursor.Cursor.next` once a cursor has no
    more results.

    Not a true error. Once raised, every later call to ``next()`` raises the
    same instance. Subclasses :exc:`StopIteration` so iterating a cursor in a
    ``for`` loop simply ends.
    """
