"""
Unit tests for the cache value codec.

Tests canonical encoding, tagged dates, the mapping escape, compression
and malformed payload handling.
"""

import base64
import gzip
import json
from datetime import date, datetime, timezone

import pytest
from pydantic import BaseModel

from saas_benchmarks.constants import COMPRESSION_MARKER
from saas_benchmarks.domain.cache.exceptions import (
    DeserializationException,
    SerializationException,
)
from saas_benchmarks.domain.cache.serialization import ValueCodec


class BenchmarkSummary(BaseModel):
    metric: str
    median: float


class TestValueCodecEncode:
    """Test ValueCodec.encode."""

    @pytest.fixture
    def codec(self):
        return ValueCodec()

    def test_canonical_json(self, codec):
        """Keys are sorted and separators compact."""
        assert codec.encode({"value": 42}) == '{"value":42}'
        assert codec.encode({"b": 1, "a": [1, 2]}) == '{"a":[1,2],"b":1}'

    def test_equal_values_encode_identically(self, codec):
        assert codec.encode({"x": 1, "y": 2}) == codec.encode({"y": 2, "x": 1})

    def test_scalars(self, codec):
        assert codec.encode("text") == '"text"'
        assert codec.encode(3.5) == "3.5"
        assert codec.encode(False) == "false"

    def test_non_ascii_kept_verbatim(self, codec):
        assert codec.encode({"name": "café"}) == '{"name":"café"}'

    def test_dates_are_tagged(self, codec):
        encoded = codec.encode({"at": date(2024, 3, 1)})
        assert json.loads(encoded) == {"at": {"__type": "Date", "value": "2024-03-01"}}

    def test_mapping_with_type_field_is_wrapped(self, codec):
        encoded = json.loads(codec.encode({"__type": "user", "id": 1}))
        assert encoded == {"__type": "Map", "value": {"__type": "user", "id": 1}}

    def test_tuple_encodes_as_list(self, codec):
        assert codec.encode((1, 2)) == "[1,2]"

    def test_pydantic_model_encodes_fields(self, codec):
        encoded = codec.encode(BenchmarkSummary(metric="nrr", median=1.1))
        assert json.loads(encoded) == {"median": 1.1, "metric": "nrr"}

    def test_none_is_rejected(self, codec):
        with pytest.raises(SerializationException, match="use delete"):
            codec.encode(None)

    def test_nested_none_is_allowed(self, codec):
        assert codec.encode({"value": None}) == '{"value":null}'

    def test_non_finite_float_is_rejected(self, codec):
        with pytest.raises(SerializationException):
            codec.encode({"value": float("nan")})

    def test_non_string_mapping_keys_are_rejected(self, codec):
        with pytest.raises(SerializationException):
            codec.encode({1: "one"})

    def test_unsupported_type_is_rejected(self, codec):
        with pytest.raises(SerializationException) as exc_info:
            codec.encode({"value": object()})

        assert exc_info.value.error_code == "CACHE_SERIALIZATION_ERROR"
        assert exc_info.value.details["value_type"] == "object"


class TestValueCodecCompression:
    """Test compression thresholds and markers."""

    def test_small_payload_not_compressed(self):
        codec = ValueCodec(compression_threshold=1024)
        assert not codec.is_compressed(codec.encode({"value": 42}))

    def test_payload_at_threshold_not_compressed(self):
        codec = ValueCodec(compression_threshold=1024)
        # Quoted string of 1022 characters encodes to exactly 1024 bytes
        encoded = codec.encode("a" * 1022)
        assert not codec.is_compressed(encoded)

    def test_payload_above_threshold_compressed(self):
        codec = ValueCodec(compression_threshold=1024)
        encoded = codec.encode("a" * 1023)

        assert encoded.startswith(COMPRESSION_MARKER)
        assert codec.decode(encoded) == "a" * 1023

    def test_force_compress(self):
        codec = ValueCodec()
        encoded = codec.encode({"value": 42}, force_compress=True)

        assert codec.is_compressed(encoded)
        assert codec.decode(encoded) == {"value": 42}

    def test_compressed_payload_is_gzip_of_canonical_json(self):
        codec = ValueCodec(compression_threshold=0)
        encoded = codec.encode({"b": 2, "a": 1})
        raw = gzip.decompress(base64.b64decode(encoded[len(COMPRESSION_MARKER) :]))

        assert raw.decode("utf-8") == '{"a":1,"b":2}'


class TestValueCodecDecode:
    """Test ValueCodec.decode."""

    @pytest.fixture
    def codec(self):
        return ValueCodec()

    def test_absent_payload_is_a_miss(self, codec):
        assert codec.decode(None) is None
        assert codec.decode("") is None

    def test_bytes_payload(self, codec):
        assert codec.decode(b'{"value":42}') == {"value": 42}

    def test_datetime_restored(self, codec):
        value = {"at": datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)}
        assert codec.decode(codec.encode(value)) == value

    def test_date_restored_as_date(self, codec):
        decoded = codec.decode(codec.encode([date(2024, 1, 2)]))
        assert decoded == [date(2024, 1, 2)]
        assert not isinstance(decoded[0], datetime)

    def test_javascript_iso_timestamp(self, codec):
        payload = '{"__type":"Date","value":"2024-01-02T03:04:05.000Z"}'
        assert codec.decode(payload) == datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)

    def test_tuples_decode_as_lists(self, codec):
        decoded = codec.decode(codec.encode({"range": (1, 5), "nested": [("a", 1)]}))

        assert decoded == {"nested": [["a", 1]], "range": [1, 5]}
        assert isinstance(decoded["range"], list)

    def test_wrapped_mapping_restored(self, codec):
        value = {"items": [{"__type": "user", "id": 1}]}
        assert codec.decode(codec.encode(value)) == value

    def test_invalid_json(self, codec):
        with pytest.raises(DeserializationException) as exc_info:
            codec.decode("{not json")

        assert exc_info.value.error_code == "CACHE_DESERIALIZATION_ERROR"

    def test_unknown_type_tag(self, codec):
        with pytest.raises(DeserializationException, match="Unknown type tag"):
            codec.decode('{"__type":"Set","value":[]}')

    def test_invalid_tagged_date(self, codec):
        with pytest.raises(DeserializationException):
            codec.decode('{"__type":"Date","value":"yesterday"}')

    def test_invalid_base64(self, codec):
        with pytest.raises(DeserializationException, match="Decompression failed"):
            codec.decode(COMPRESSION_MARKER + "!!!not-base64!!!")

    def test_base64_that_is_not_gzip(self, codec):
        payload = COMPRESSION_MARKER + base64.b64encode(b"plain text").decode("ascii")
        with pytest.raises(DeserializationException):
            codec.decode(payload)


class TestValueCodecAsync:
    """Test the thread-offloading variants."""

    @pytest.mark.asyncio
    async def test_encode_and_decode_async(self):
        codec = ValueCodec(compression_threshold=16)
        value = {"rows": [{"metric": "arr", "value": i} for i in range(50)]}

        encoded = await codec.encode_async(value)

        assert codec.is_compressed(encoded)
        assert encoded == codec.encode(value)
        assert await codec.decode_async(encoded) == value

    @pytest.mark.asyncio
    async def test_decode_async_absent_payload(self):
        assert await ValueCodec().decode_async(None) is None
