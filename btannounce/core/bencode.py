"""Bencode encoding and decoding for the tracker protocol.

A decoded bencode value tree is made of four Python types:

- ``bytes`` for byte strings
- ``int`` for integers
- ``list`` for lists
- ``dict`` with ``bytes`` keys for dictionaries

Tracker replies are consumed through the typed accessors
:func:`search_dict` and :func:`search_dict_default`, which look a key up in a
decoded dictionary and fall back to a default when the key is absent or the
value has the wrong type.
"""

from __future__ import annotations

from typing import Any, Union

from btannounce.exceptions import BencodeError

BencodeValue = Union[bytes, int, list, dict]

# Tracker replies nest at most a few levels; deeper input is rejected.
MAX_DEPTH = 64


class BencodeDecodeError(BencodeError):
    """Raised when a byte string is not valid bencode."""


class BencodeEncodeError(BencodeError):
    """Raised when a Python value cannot be bencoded."""


class BencodeDecoder:
    """Incremental decoder over a bencoded byte string."""

    def __init__(self, data: bytes, max_depth: int = MAX_DEPTH):
        """Initialize decoder.

        Args:
            data: Bencoded input
            max_depth: Deepest list/dictionary nesting accepted

        """
        if not isinstance(data, (bytes, bytearray, memoryview)):
            msg = f"Bencode input must be bytes, got {type(data).__name__}"
            raise BencodeDecodeError(msg)
        self.data = bytes(data)
        self.pos = 0
        self.max_depth = max_depth
        self.depth = 0

    def decode(self) -> BencodeValue:
        """Decode the value at the current position and advance past it."""
        if self.pos >= len(self.data):
            msg = f"Unexpected end of data at position {self.pos}"
            raise BencodeDecodeError(msg)

        token = self.data[self.pos : self.pos + 1]
        if token == b"i":
            return self._decode_int()
        if token in (b"l", b"d"):
            return self._decode_container(token)
        if token.isdigit():
            return self._decode_bytes()

        msg = f"Invalid bencode token {token!r} at position {self.pos}"
        raise BencodeDecodeError(msg)

    def _decode_int(self) -> int:
        end = self.data.find(b"e", self.pos)
        if end == -1:
            msg = f"Unterminated integer at position {self.pos}"
            raise BencodeDecodeError(msg)

        raw = self.data[self.pos + 1 : end]
        digits = raw[1:] if raw.startswith(b"-") else raw
        if not digits or not digits.isdigit():
            msg = f"Invalid integer {raw!r} at position {self.pos}"
            raise BencodeDecodeError(msg)
        if digits.startswith(b"0") and (len(digits) > 1 or raw.startswith(b"-")):
            msg = f"Invalid integer {raw!r} at position {self.pos}"
            raise BencodeDecodeError(msg)

        self.pos = end + 1
        return int(raw)

    def _decode_bytes(self) -> bytes:
        colon = self.data.find(b":", self.pos)
        if colon == -1:
            msg = f"Missing string length separator at position {self.pos}"
            raise BencodeDecodeError(msg)

        raw_length = self.data[self.pos : colon]
        if not raw_length.isdigit():
            msg = f"Invalid string length {raw_length!r} at position {self.pos}"
            raise BencodeDecodeError(msg)
        if raw_length.startswith(b"0") and len(raw_length) > 1:
            msg = f"Invalid string length {raw_length!r} at position {self.pos}"
            raise BencodeDecodeError(msg)

        length = int(raw_length)
        start = colon + 1
        end = start + length
        if end > len(self.data):
            msg = (
                f"String at position {self.pos} claims {length} bytes, "
                f"only {len(self.data) - start} available"
            )
            raise BencodeDecodeError(msg)

        self.pos = end
        return self.data[start:end]

    def _decode_container(self, token: bytes) -> list[Any] | dict[bytes, Any]:
        if self.depth >= self.max_depth:
            msg = f"Nesting deeper than {self.max_depth} levels at position {self.pos}"
            raise BencodeDecodeError(msg)
        self.depth += 1
        try:
            return self._decode_list() if token == b"l" else self._decode_dict()
        finally:
            self.depth -= 1

    def _decode_list(self) -> list[Any]:
        self.pos += 1
        items: list[Any] = []
        while True:
            if self.pos >= len(self.data):
                msg = "Unterminated list"
                raise BencodeDecodeError(msg)
            if self.data[self.pos : self.pos + 1] == b"e":
                self.pos += 1
                return items
            items.append(self.decode())

    def _decode_dict(self) -> dict[bytes, Any]:
        self.pos += 1
        result: dict[bytes, Any] = {}
        while True:
            if self.pos >= len(self.data):
                msg = "Unterminated dictionary"
                raise BencodeDecodeError(msg)
            if self.data[self.pos : self.pos + 1] == b"e":
                self.pos += 1
                return result
            if not self.data[self.pos : self.pos + 1].isdigit():
                msg = f"Dictionary key must be a string at position {self.pos}"
                raise BencodeDecodeError(msg)
            key = self._decode_bytes()
            result[key] = self.decode()


class BencodeEncoder:
    """Encoder producing canonical bencode (dictionary keys sorted)."""

    def encode(self, value: Any) -> bytes:
        """Encode a Python value into bencode."""
        parts: list[bytes] = []
        self._encode_into(value, parts)
        return b"".join(parts)

    def _encode_into(self, value: Any, parts: list[bytes]) -> None:
        if isinstance(value, (bytes, bytearray, memoryview)):
            raw = bytes(value)
            parts.append(str(len(raw)).encode("ascii"))
            parts.append(b":")
            parts.append(raw)
        elif isinstance(value, str):
            self._encode_into(value.encode("utf-8"), parts)
        elif isinstance(value, int):
            parts.append(b"i%de" % value)
        elif isinstance(value, (list, tuple)):
            parts.append(b"l")
            for item in value:
                self._encode_into(item, parts)
            parts.append(b"e")
        elif isinstance(value, dict):
            parts.append(b"d")
            for key, item in sorted(
                ((self._encode_key(k), v) for k, v in value.items()),
                key=lambda kv: kv[0],
            ):
                self._encode_into(key, parts)
                self._encode_into(item, parts)
            parts.append(b"e")
        else:
            msg = f"Cannot bencode value of type {type(value).__name__}"
            raise BencodeEncodeError(msg)

    @staticmethod
    def _encode_key(key: Any) -> bytes:
        if isinstance(key, bytes):
            return key
        if isinstance(key, str):
            return key.encode("utf-8")
        msg = f"Dictionary keys must be bytes or str, got {type(key).__name__}"
        raise BencodeEncodeError(msg)


def decode(data: bytes) -> BencodeValue:
    """Decode a complete bencoded byte string.

    Raises:
        BencodeDecodeError: If the data is malformed or has trailing bytes

    """
    decoder = BencodeDecoder(data)
    value = decoder.decode()
    if decoder.pos != len(decoder.data):
        msg = f"Trailing data after position {decoder.pos}"
        raise BencodeDecodeError(msg)
    return value


def encode(value: Any) -> bytes:
    """Encode a Python value into bencode."""
    return BencodeEncoder().encode(value)


def _as_key(key: str | bytes) -> bytes:
    return key.encode("utf-8") if isinstance(key, str) else key


def search_dict(tree: Any, key: str | bytes) -> BencodeValue | None:
    """Return ``tree[key]`` if ``tree`` is a decoded dictionary holding it, else None."""
    if not isinstance(tree, dict):
        return None
    return tree.get(_as_key(key))


def search_dict_default(
    tree: Any,
    key: str | bytes,
    default: Any,
    expected_type: type | tuple[type, ...] | None = None,
) -> Any:
    """Look ``key`` up in a decoded dictionary with a fallback.

    Args:
        tree: Decoded bencode value, normally a dictionary
        key: Dictionary key
        default: Returned when the key is absent or the value is mistyped
        expected_type: Required type(s) of the value, or None for any

    Returns:
        The stored value, or ``default``

    """
    value = search_dict(tree, key)
    if value is None:
        return default
    if expected_type is not None:
        # bool is an int subclass but never produced by the decoder
        if isinstance(value, bool) or not isinstance(value, expected_type):
            return default
    return value


__all__ = [
    "BencodeDecodeError",
    "BencodeDecoder",
    "BencodeEncodeError",
    "BencodeEncoder",
    "BencodeValue",
    "decode",
    "encode",
    "search_dict",
    "search_dict_default",
]
