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

"""Python client for MongoDB's legacy wire protocol."""
from __future__ import annotations

__all__ = [
    "Connection",
    "Cursor",
    "CursorType",
    "EndOfResults",
    "dial",
    "get_version_string",
    "version",
    "version_tuple",
]

from mongowire._version import __version__, get_version_string, version, version_tuple
from mongowire.connection import Connection, dial
from mongowire.cursor import Cursor, CursorType
from mongowire.errors import EndOfResults
