"""Core protocol primitives.

This module contains the bencode codec and the typed lookups used to read
tracker replies.
"""

from __future__ import annotations

from btannounce.core.bencode import (
    BencodeDecodeError,
    BencodeDecoder,
    BencodeEncodeError,
    BencodeEncoder,
    decode,
    encode,
    search_dict,
    search_dict_default,
)

__all__ = [
    "BencodeDecodeError",
    "BencodeDecoder",
    "BencodeEncodeError",
    "BencodeEncoder",
    "decode",
    "encode",
    "search_dict",
    "search_dict_default",
]
