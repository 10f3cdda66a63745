from __future__ import annotations

import struct

import cbor2

from .constants import FRAME_HEADER_BYTES, MAX_FRAME_BYTES
from .errors import FrameError

_HEADER = struct.Struct(">I")


def encode(obj) -> bytes:
    return cbor2.dumps(obj)


def decode(b: bytes):
    return cbor2.loads(b)


def frame(obj, *, max_bytes: int = MAX_FRAME_BYTES) -> bytes:
    """Encode ``obj`` and prefix it with its length."""
    payload = encode(obj)
    if len(payload) > max_bytes:
        raise FrameError(f"frame too large: {len(payload)} > {max_bytes}")
    return _HEADER.pack(len(payload)) + payload


def parse_header(header: bytes, *, max_bytes: int = MAX_FRAME_BYTES) -> int:
    if len(header) != FRAME_HEADER_BYTES:
        raise FrameError("short frame header")
    (length,) = _HEADER.unpack(header)
    if length > max_bytes:
        raise FrameError(f"frame too large: {length} > {max_bytes}")
    return length


def unframe(payload: bytes):
    try:
        return decode(payload)
    except Exception as e:
        raise FrameError(f"undecodable frame: {e}") from e
