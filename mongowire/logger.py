# Copyright 2023-present MongoDB, Inc.
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
from __future__ import annotations

import enum
import logging
import os
from typing import Any

from bson import UuidRepresentation, json_util
from bson.json_util import JSONOptions


class _WireStatusMessage(str, enum.Enum):
    CONNECTION_OPENED = "Connection opened"
    CONNECTION_CLOSED = "Connection closed"
    CONNECTION_FAILED = "Connection failed"
    MESSAGE_SENT = "Message sent"
    REPLY_RECEIVED = "Reply received"
    REPLY_ORPHANED = "Reply orphaned"
    CURSORS_KILLED = "Cursors killed"
    CURSOR_FAILED = "Cursor failed"


_DEFAULT_DOCUMENT_LENGTH = 1000
_DOCUMENT_NAMES = ["query", "projection"]
_JSON_OPTIONS = JSONOptions(uuid_representation=UuidRepresentation.STANDARD)
_CONNECTION_LOGGER = logging.getLogger("mongowire.connection")
_CURSOR_LOGGER = logging.getLogger("mongowire.cursor")


def _debug_log(logger: logging.Logger, **fields: Any) -> None:
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug(LogMessage(**fields))


class LogMessage:
    __slots__ = ["_kwargs"]

    def __init__(self, **kwargs: Any):
        self._kwargs = kwargs

    def __str__(self) -> str:
        self._truncate()
        return "%s" % (
            json_util.dumps(
                self._kwargs, json_options=_JSON_OPTIONS, default=lambda o: o.__repr__()
            )
        )

    def _truncate(self) -> None:
        document_length = int(
            os.getenv("MONGOWIRE_LOG_MAX_DOCUMENT_LENGTH", _DEFAULT_DOCUMENT_LENGTH)
        )
        if document_length < 0:
            document_length = _DEFAULT_DOCUMENT_LENGTH

        for doc_name in _DOCUMENT_NAMES:
            doc = self._kwargs.get(doc_name)
            if doc is not None and not isinstance(doc, str):
                doc = json_util.dumps(
                    doc, json_options=_JSON_OPTIONS, default=lambda o: o.__repr__()
                )
                if len(doc) > document_length:
                    doc = doc[:document_length] + "..."
                self._kwargs[doc_name] = doc
