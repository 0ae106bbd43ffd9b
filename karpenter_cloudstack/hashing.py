"""Stable structural hashing for drift detection.

``hash_structure`` walks dataclasses, mappings and sequences and produces a
64-bit integer that does not depend on insertion or list order:

- sequences are hashed as sets (reordering or repeating elements does not
  change the hash);
- mapping items are hashed independently of key order;
- dataclass fields holding a zero value (``None``, ``""``, ``0``, ``False``,
  empty containers) are skipped.

Skipping zero values means a field explicitly set to zero hashes the same as
an absent field. This is a known limitation of drift detection.
"""

from __future__ import annotations

import dataclasses
import hashlib
from collections.abc import Mapping, Set
from typing import Any


def _digest(*parts: bytes) -> bytes:
    h = hashlib.blake2b(digest_size=8)
    for part in parts:
        h.update(len(part).to_bytes(4, "big"))
        h.update(part)
    return h.digest()


def is_zero(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (str, bytes, int, float, Mapping, Set, list, tuple)):
        return not value
    return False


def _hash(value: Any) -> bytes:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        fields = sorted(
            (f.name, _hash(getattr(value, f.name)))
            for f in dataclasses.fields(value)
            if not is_zero(getattr(value, f.name))
        )
        return _digest(b"struct", *(name.encode() + digest for name, digest in fields))
    if isinstance(value, Mapping):
        items = sorted(_digest(_hash(k), _hash(v)) for k, v in value.items())
        return _digest(b"map", *items)
    if isinstance(value, (list, tuple, Set)):
        return _digest(b"set", *sorted({_hash(v) for v in value}))
    if isinstance(value, bool):
        return _digest(b"bool", b"1" if value else b"0")
    if isinstance(value, (int, float)):
        return _digest(b"num", repr(value).encode())
    if isinstance(value, str):
        return _digest(b"str", value.encode())
    if value is None:
        return _digest(b"nil")
    raise TypeError(f"cannot hash value of type {type(value).__name__}")


def hash_structure(value: Any) -> int:
    return int.from_bytes(_hash(value), "big")
