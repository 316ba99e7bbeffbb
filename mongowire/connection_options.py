# Copyright 2014-present MongoDB, Inc.
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

"""Tools to parse connection options."""
from __future__ import annotations

from typing import Any, Mapping, Optional

from bson.codec_options import CodecOptions

from mongowire.common import CONNECT_TIMEOUT, MAX_MESSAGE_SIZE, validate


def _parse_codec_options(options: Mapping[str, Any]) -> CodecOptions:
    """Parse BSON codec options."""
    return CodecOptions(
        document_class=options.get("document_class", dict),
        tz_aware=options.get("tz_aware", False),
    )


class ConnectionOptions:
    """Read only configuration options for a Connection.

    Should not be instantiated directly by application developers. Access
    an instance of ConnectionOptions through
    :attr:`~mongowire.connection.Connection.options` instead.
    """

    def __init__(self, options: Mapping[str, Any]):
        options = dict([validate(opt, val) for opt, val in options.items()])

        connect_timeout = options.get("connecttimeoutms", CONNECT_TIMEOUT)
        self.__connect_timeout = connect_timeout
        self.__socket_timeout: Optional[float] = options.get("sockettimeoutms")
        self.__codec_options = _parse_codec_options(options)
        self.__max_message_size: int = options.get("maxmessagesize", MAX_MESSAGE_SIZE)

    @property
    def connect_timeout(self) -> Optional[float]:
        """How long a connection can take to be opened before timing out, in
        seconds.
        """
        return self.__connect_timeout

    @property
    def socket_timeout(self) -> Optional[float]:
        """How long a send or receive on a socket can take before timing out,
        in seconds. ``None`` blocks indefinitely.
        """
        return self.__socket_timeout

    @property
    def codec_options(self) -> CodecOptions:
        """A :class:`~bson.codec_options.CodecOptions` instance."""
        return self.__codec_options

    @property
    def max_message_size(self) -> int:
        """The largest reply this connection accepts, in bytes."""
        return self.__max_message_size
