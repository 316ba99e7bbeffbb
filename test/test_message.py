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

"""Test the wire protocol message builders and reply parsing."""
from __future__ import annotations

import struct
import sys

sys.path[0:0] = [""]

import unittest

import bson
from bson.codec_options import DEFAULT_CODEC_OPTIONS
from bson.errors import InvalidStringData
from bson.son import SON

from mongowire import message
from mongowire.errors import CursorNotFound, InvalidOperation, ProtocolError, QueryFailure
from test import Request, encode_docs


def _request(msg: message._MessageWriter) -> Request:
    data = msg.finish()
    length, request_id, response_to, op_code = message._UNPACK_HEADER(data[:16])
    assert length == len(data)
    return Request(request_id, response_to, op_code, data[16:])


class TestMessageWriter(unittest.TestCase):
    def test_header(self):
        msg = message._MessageWriter(7, message.OP_GET_MORE)
        msg.write_int32(0)
        data = msg.finish()
        self.assertEqual(20, len(data))
        self.assertEqual((20, 7, 0, message.OP_GET_MORE), message._UNPACK_HEADER(data[:16]))

    def test_request_id_is_unsigned(self):
        msg = message._MessageWriter(0xFFFFFFFF, message.OP_QUERY)
        data = msg.finish()
        self.assertEqual(b"\xff\xff\xff\xff", data[4:8])

    def test_write_document_returns_size(self):
        msg = message._MessageWriter(1, message.OP_INSERT)
        size = msg.write_document({"a": 1})
        self.assertEqual(len(bson.encode({"a": 1})), size)
        self.assertEqual(16 + size, len(msg))

    def test_cstring_rejects_nul(self):
        msg = message._MessageWriter(1, message.OP_QUERY)
        self.assertRaises(InvalidStringData, msg.write_cstring, "db.a\x00b")

    def test_cstring_is_utf8(self):
        msg = message._MessageWriter(1, message.OP_QUERY)
        msg.write_cstring("db.caf\xe9")
        self.assertEqual(b"db.caf\xc3\xa9\x00", msg.finish()[16:])


class TestBuilders(unittest.TestCase):
    def test_insert(self):
        docs = [{"a": 1}, {"b": 2}]
        request = _request(message._insert(3, "db.c", docs, False, DEFAULT_CODEC_OPTIONS))
        self.assertEqual(message.OP_INSERT, request.op_code)
        self.assertEqual(3, request.request_id)
        self.assertEqual(0, request.flags)
        self.assertEqual("db.c", request.namespace)
        self.assertEqual(docs, request.docs)

    def test_insert_continue_on_error(self):
        request = _request(message._insert(1, "db.c", [{}], True, DEFAULT_CODEC_OPTIONS))
        self.assertEqual(message._INSERT_CONTINUE_ON_ERROR, request.flags)

    def test_empty_insert(self):
        self.assertRaises(
            InvalidOperation, message._insert, 1, "db.c", [], False, DEFAULT_CODEC_OPTIONS
        )

    def test_update_writes_selector_first(self):
        request = _request(
            message._update(
                1, "db.c", {"_id": 1}, {"$set": {"x": 2}}, True, True, DEFAULT_CODEC_OPTIONS
            )
        )
        self.assertEqual(message.OP_UPDATE, request.op_code)
        self.assertEqual("db.c", request.namespace)
        self.assertEqual(message._UPDATE_UPSERT | message._UPDATE_MULTI, request.flags)
        self.assertEqual([{"_id": 1}, {"$set": {"x": 2}}], request.docs)

    def test_update_flags(self):
        for upsert, multi, flags in [(False, False, 0), (True, False, 1), (False, True, 2)]:
            request = _request(
                message._update(1, "db.c", {}, {}, upsert, multi, DEFAULT_CODEC_OPTIONS)
            )
            self.assertEqual(flags, request.flags)

    def test_delete(self):
        request = _request(message._delete(4, "db.c", {"a": 1}, True, DEFAULT_CODEC_OPTIONS))
        self.assertEqual(message.OP_DELETE, request.op_code)
        self.assertEqual(message._DELETE_SINGLE_REMOVE, request.flags)
        self.assertEqual([{"a": 1}], request.docs)

        request = _request(message._delete(4, "db.c", {}, False, DEFAULT_CODEC_OPTIONS))
        self.assertEqual(0, request.flags)

    def test_query(self):
        request = _request(
            message._query(9, 6, "db.c", 5, -3, {"a": 1}, {"b": 1}, DEFAULT_CODEC_OPTIONS)
        )
        self.assertEqual(message.OP_QUERY, request.op_code)
        self.assertEqual(6, request.flags)
        self.assertEqual("db.c", request.namespace)
        self.assertEqual(5, request.num_to_skip)
        self.assertEqual(-3, request.num_to_return)
        self.assertEqual({"a": 1}, request.query)
        self.assertEqual({"b": 1}, request.projection)

    def test_query_without_projection(self):
        request = _request(message._query(1, 0, "db.c", 0, 0, {}, None, DEFAULT_CODEC_OPTIONS))
        self.assertEqual([{}], request.docs)

    def test_query_keeps_key_order(self):
        query = SON([("b", 1), ("a", 2)])
        request = _request(message._query(1, 0, "db.c", 0, 0, query, None, DEFAULT_CODEC_OPTIONS))
        self.assertEqual(["b", "a"], list(request.query))

    def test_get_more(self):
        request = _request(message._get_more(2, "db.c", 10, 2**40))
        self.assertEqual(message.OP_GET_MORE, request.op_code)
        self.assertEqual("db.c", request.namespace)
        self.assertEqual(10, request.num_to_return)
        self.assertEqual(2**40, request.cursor_id)

    def test_kill_cursors(self):
        data = message._kill_cursors(5, [11, 12]).finish()
        self.assertEqual(16 + 8 + 16, len(data))
        self.assertEqual((0, 2), struct.unpack_from("<ii", data, 16))
        self.assertEqual((11, 12), struct.unpack_from("<qq", data, 24))


class TestOpReply(unittest.TestCase):
    def test_unpack(self):
        payload = encode_docs([{"a": 1}])
        body = struct.pack("<Iqii", 8, 99, 4, 1) + payload
        reply = message._OpReply.unpack(body)
        self.assertEqual(8, reply.flags)
        self.assertEqual(99, reply.cursor_id)
        self.assertEqual(4, reply.starting_from)
        self.assertEqual(1, reply.number_returned)
        self.assertEqual(payload, bytes(reply.documents))

    def test_negative_number_returned(self):
        body = struct.pack("<Iqii", 0, 0, 0, -1)
        self.assertRaises(ProtocolError, message._OpReply.unpack, body)


class TestReplyFailure(unittest.TestCase):
    def test_no_failure(self):
        self.assertIsNone(message._reply_failure(message._REPLY_AWAIT_CAPABLE, b"", 0))

    def test_cursor_not_found(self):
        exc = message._reply_failure(message._REPLY_CURSOR_NOT_FOUND, b"", 1234)
        self.assertIsInstance(exc, CursorNotFound)
        self.assertEqual(1234, exc.cursor_id)
        self.assertIn("1234", str(exc))

    def test_query_failure_err(self):
        payload = encode_docs([{"$err": "bad query", "code": 17}])
        exc = message._reply_failure(message._REPLY_QUERY_FAILURE, payload, 0)
        self.assertIsInstance(exc, QueryFailure)
        self.assertEqual("bad query", str(exc))
        self.assertEqual(17, exc.code)
        self.assertEqual({"$err": "bad query", "code": 17}, exc.details)

    def test_query_failure_without_err(self):
        payload = encode_docs([{"ok": 0}])
        exc = message._reply_failure(message._REPLY_QUERY_FAILURE, payload, 0)
        self.assertIsInstance(exc, QueryFailure)
        self.assertEqual("query failure", str(exc))
        self.assertIsNone(exc.code)

    def test_query_failure_undecodable(self):
        exc = message._reply_failure(message._REPLY_QUERY_FAILURE, b"\x05\x00", 0)
        self.assertIsInstance(exc, QueryFailure)
        self.assertEqual("query failure", str(exc))
        self.assertIsNone(exc.details)

    def test_query_failure_empty(self):
        exc = message._reply_failure(message._REPLY_QUERY_FAILURE, b"", 0)
        self.assertIsInstance(exc, QueryFailure)


if __name__ == "__main__":
    unittest.main()
