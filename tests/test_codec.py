"""
Unit tests for gateway frame encoding and zlib-stream inflation.
"""

import json
import zlib

import pytest

from shardline.errors import ProtocolError
from shardline.gateway.codec import ZlibStreamInflator, decode_frame, encode_frame
from shardline.gateway.models import IdentifyPayload, IdentifyProperties
from shardline.gateway.opcodes import OpCode


def compress_stream(messages):
    """Compress messages the way the gateway does: one stream, sync-flushed per message."""
    compressor = zlib.compressobj()
    return [
        compressor.compress(json.dumps(m).encode()) + compressor.flush(zlib.Z_SYNC_FLUSH)
        for m in messages
    ]


class TestFrames:

    def test_identify_round_trip(self):
        payload = IdentifyPayload(
            token="test-token",
            intents=13827,
            shard=[1, 4],
            v=10,
            properties=IdentifyProperties(os="linux"),
        )

        frame = decode_frame(encode_frame(OpCode.IDENTIFY, payload.model_dump()))

        assert frame.op == OpCode.IDENTIFY
        assert frame.s is None and frame.t is None
        assert IdentifyPayload.model_validate(frame.d) == payload

    def test_dispatch_fields(self):
        raw = json.dumps({"op": 0, "s": 7, "t": "MESSAGE_CREATE", "d": {"content": "log"}})
        frame = decode_frame(raw)
        assert (frame.op, frame.s, frame.t) == (0, 7, "MESSAGE_CREATE")
        assert frame.d == {"content": "log"}

    def test_bytes_input(self):
        assert decode_frame(b'{"op": 11}').op == OpCode.HEARTBEAT_ACK

    def test_heartbeat_null_sequence(self):
        assert json.loads(encode_frame(OpCode.HEARTBEAT, None)) == {"op": 1, "d": None}

    @pytest.mark.parametrize("raw", [
        "not json",
        "[1, 2, 3]",
        '{"d": {}}',
        '{"op": "hello"}',
        b"\xff\xfe",
    ])
    def test_malformed_frames_raise_protocol_error(self, raw):
        with pytest.raises(ProtocolError):
            decode_frame(raw)


class TestZlibStreamInflator:

    def test_reassembles_split_chunks(self):
        first, second = compress_stream([{"op": 10, "d": {"heartbeat_interval": 41250}}, {"op": 11}])
        inflator = ZlibStreamInflator()

        assert inflator.feed(first[:5]) is None
        message = inflator.feed(first[5:])
        assert decode_frame(message).d == {"heartbeat_interval": 41250}

        # Shared compression context across messages
        assert decode_frame(inflator.feed(second)).op == OpCode.HEARTBEAT_ACK

    def test_corrupt_stream(self):
        inflator = ZlibStreamInflator()
        with pytest.raises(ProtocolError):
            inflator.feed(b"garbage" + b"\x00\x00\xff\xff")

    def test_recovers_after_corrupt_stream(self):
        inflator = ZlibStreamInflator()
        with pytest.raises(ProtocolError):
            inflator.feed(b"garbage" + b"\x00\x00\xff\xff")

        (fresh,) = compress_stream([{"op": 11}])
        assert decode_frame(inflator.feed(fresh)).op == OpCode.HEARTBEAT_ACK
