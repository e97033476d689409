"""
Cache Value Serialization

Encodes structured values into the transport-safe string stored in Redis
and reverses the transform on read.

Wire format:
- canonical JSON (sorted keys, compact separators) of the value tree
- dates are tagged as {"__type": "Date", "value": <ISO 8601>}
- mappings that carry their own "__type" key are wrapped as
  {"__type": "Map", "value": {...}} so user data is never mistaken for a tag
- sequences (lists and tuples) are written as JSON arrays and always
  decode as lists; pydantic models decode as their field mapping
- payloads above the compression threshold (or when forced) are gzipped,
  base64 encoded and prefixed with the compression marker
"""

import asyncio
import base64
import binascii
import gzip
import json
import math
import zlib
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Union

from ...constants import (
    COMPRESSION_MARKER,
    COMPRESSION_THRESHOLD_BYTES,
    DATE_TYPE_TAG,
)
from .exceptions import DeserializationException, SerializationException

TYPE_FIELD = "__type"
VALUE_FIELD = "value"
MAP_TYPE_TAG = "Map"

# Tagged union of everything decode() returns. encode() also accepts tuples
# and pydantic models, which come back as lists and dicts respectively.
CacheValue = Union[
    None,
    bool,
    int,
    float,
    str,
    date,
    datetime,
    List["CacheValue"],
    Dict[str, "CacheValue"],
]


def _to_wire(value: Any, path: str = "$") -> Any:
    """Convert a value tree into JSON-native data, tagging dates."""
    if value is None or isinstance(value, (bool, str, int)):
        return value

    if isinstance(value, float):
        if not math.isfinite(value):
            raise SerializationException(
                f"Cannot serialize non-finite float at {path}", value_type="float"
            )
        return value

    # datetime is a date subclass; both share the Date tag
    if isinstance(value, date):
        return {TYPE_FIELD: DATE_TYPE_TAG, VALUE_FIELD: value.isoformat()}

    if isinstance(value, dict):
        converted = {}
        for key, item in value.items():
            if not isinstance(key, str):
                raise SerializationException(
                    f"Mapping keys must be strings at {path}",
                    value_type=type(key).__name__,
                )
            converted[key] = _to_wire(item, f"{path}.{key}")
        if TYPE_FIELD in converted:
            return {TYPE_FIELD: MAP_TYPE_TAG, VALUE_FIELD: converted}
        return converted

    if isinstance(value, (list, tuple)):
        return [_to_wire(item, f"{path}[{index}]") for index, item in enumerate(value)]

    # Pydantic models are cached as their field mapping
    if hasattr(value, "model_dump"):
        return _to_wire(value.model_dump(), path)

    raise SerializationException(
        f"Unsupported value type at {path}: {type(value).__name__}",
        value_type=type(value).__name__,
    )


def _parse_date(raw: Any) -> Union[date, datetime]:
    if not isinstance(raw, str):
        raise ValueError("date value must be an ISO 8601 string")
    if "T" not in raw:
        return date.fromisoformat(raw)
    # Payloads written by JavaScript clients use a trailing Z
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    return datetime.fromisoformat(raw)


def _from_wire(value: Any) -> Any:
    """Rebuild a value tree from JSON-native data, restoring tagged types."""
    if isinstance(value, list):
        return [_from_wire(item) for item in value]

    if not isinstance(value, dict):
        return value

    if TYPE_FIELD not in value:
        return {key: _from_wire(item) for key, item in value.items()}

    tag = value.get(TYPE_FIELD)
    if tag == DATE_TYPE_TAG:
        try:
            return _parse_date(value.get(VALUE_FIELD))
        except ValueError as e:
            raise DeserializationException(
                f"Invalid tagged date: {value.get(VALUE_FIELD)!r}", original_error=e
            )

    if tag == MAP_TYPE_TAG and isinstance(value.get(VALUE_FIELD), dict):
        return {key: _from_wire(item) for key, item in value[VALUE_FIELD].items()}

    raise DeserializationException(f"Unknown type tag in cached payload: {tag!r}")


class ValueCodec:
    """
    Encoder/decoder for cached values.

    Stateless apart from its thresholds, so one instance can be shared by
    concurrent requests.
    """

    def __init__(
        self,
        compression_threshold: int = COMPRESSION_THRESHOLD_BYTES,
        compression_level: int = 6,
    ):
        self.compression_threshold = compression_threshold
        self.compression_level = compression_level

    # Encoding

    def canonicalize(self, value: CacheValue) -> str:
        """Canonical JSON form of value with dates tagged.

        Raises:
            SerializationException: If value is missing or not representable
        """
        if value is None:
            raise SerializationException(
                "Cannot serialize undefined or null values; use delete instead"
            )

        wire = _to_wire(value)
        try:
            return json.dumps(
                wire,
                sort_keys=True,
                separators=(",", ":"),
                ensure_ascii=False,
                allow_nan=False,
            )
        except (TypeError, ValueError) as e:
            raise SerializationException(
                f"Serialization failed: {e}",
                value_type=type(value).__name__,
                original_error=e,
            )

    def should_compress(self, raw: bytes, force_compress: bool = False) -> bool:
        return force_compress or len(raw) > self.compression_threshold

    def compress(self, raw: bytes) -> str:
        """Gzip raw bytes and return the marked base64 payload."""
        compressed = gzip.compress(raw, compresslevel=self.compression_level, mtime=0)
        return COMPRESSION_MARKER + base64.b64encode(compressed).decode("ascii")

    def encode(self, value: CacheValue, force_compress: bool = False) -> str:
        """
        Encode value into the string stored in the cache.

        Args:
            value: Structured value to cache (must not be None)
            force_compress: Compress regardless of size

        Returns:
            Canonical JSON, or the compression marker followed by base64 gzip data

        Raises:
            SerializationException: If value is missing or not representable
        """
        canonical = self.canonicalize(value)
        raw = canonical.encode("utf-8")
        if self.should_compress(raw, force_compress):
            return self.compress(raw)
        return canonical

    async def encode_async(
        self, value: CacheValue, force_compress: bool = False
    ) -> str:
        """Encode value, running compression in a worker thread."""
        canonical = self.canonicalize(value)
        raw = canonical.encode("utf-8")
        if self.should_compress(raw, force_compress):
            return await asyncio.to_thread(self.compress, raw)
        return canonical

    # Decoding

    @staticmethod
    def is_compressed(payload: str) -> bool:
        return payload.startswith(COMPRESSION_MARKER)

    @staticmethod
    def _as_text(payload: Union[str, bytes, None]) -> Optional[str]:
        if not payload:
            return None
        if isinstance(payload, bytes):
            try:
                return payload.decode("utf-8")
            except UnicodeDecodeError as e:
                raise DeserializationException(
                    "Cached payload is not valid UTF-8", original_error=e
                )
        return payload

    def decompress(self, payload: str) -> str:
        """Reverse compress(); payload must carry the compression marker."""
        try:
            compressed = base64.b64decode(
                payload[len(COMPRESSION_MARKER) :], validate=True
            )
            return gzip.decompress(compressed).decode("utf-8")
        except (binascii.Error, OSError, EOFError, zlib.error, UnicodeDecodeError) as e:
            raise DeserializationException(
                f"Decompression failed: {e}",
                payload_preview=payload[:64],
                original_error=e,
            )

    def parse(self, text: str) -> CacheValue:
        """Parse canonical JSON back into a value tree."""
        try:
            wire = json.loads(text)
        except ValueError as e:
            raise DeserializationException(
                f"Deserialization failed: {e}",
                payload_preview=text[:64],
                original_error=e,
            )
        return _from_wire(wire)

    def decode(self, payload: Union[str, bytes, None]) -> CacheValue:
        """
        Decode a cached payload.

        Returns:
            The original value, or None for an empty/absent payload

        Raises:
            DeserializationException: If the payload is malformed
        """
        text = self._as_text(payload)
        if text is None:
            return None
        if self.is_compressed(text):
            text = self.decompress(text)
        return self.parse(text)

    async def decode_async(self, payload: Union[str, bytes, None]) -> CacheValue:
        """Decode payload, running decompression in a worker thread."""
        text = self._as_text(payload)
        if text is None:
            return None
        if self.is_compressed(text):
            text = await asyncio.to_thread(self.decompress, text)
        return self.parse(text)
