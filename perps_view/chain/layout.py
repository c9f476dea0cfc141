# perps_view/chain/layout.py
"""Borsh decoding driven by Anchor IDL type descriptors."""

import re
import struct
from typing import Any

from solders.pubkey import Pubkey

FIXED = {
    "bool": ("<?", 1),
    "u8": ("<B", 1),
    "i8": ("<b", 1),
    "u16": ("<H", 2),
    "i16": ("<h", 2),
    "u32": ("<I", 4),
    "i32": ("<i", 4),
    "u64": ("<Q", 8),
    "i64": ("<q", 8),
    "f32": ("<f", 4),
    "f64": ("<d", 8),
}

WIDE = {
    "u128": (16, False),
    "i128": (16, True),
    "u256": (32, False),
    "i256": (32, True),
}

PUBKEY_TYPES = ("publicKey", "pubkey")


class LayoutError(Exception):
    pass


def snake_case(name: str) -> str:
    name = re.sub(r"([a-z0-9])([A-Z])", r"\1_\2", name)
    return re.sub(r"([A-Z]+)([A-Z][a-z])", r"\1_\2", name).lower()


def defined_name(ty: Any) -> str:
    ref = ty["defined"]
    return ref["name"] if isinstance(ref, dict) else str(ref)


class Reader:
    def __init__(self, data: bytes, offset: int = 0):
        self.data = data
        self.offset = offset

    def take(self, n: int) -> bytes:
        end = self.offset + n
        if n < 0 or end > len(self.data):
            raise LayoutError(
                f"need {n} bytes at offset {self.offset}, have {len(self.data) - self.offset}"
            )
        chunk = self.data[self.offset : end]
        self.offset = end
        return chunk


def decode_type(ty: Any, reader: Reader, registry: dict[str, dict[str, Any]]) -> Any:
    if isinstance(ty, str):
        if ty in FIXED:
            fmt, size = FIXED[ty]
            return struct.unpack(fmt, reader.take(size))[0]
        if ty in WIDE:
            size, signed = WIDE[ty]
            return int.from_bytes(reader.take(size), "little", signed=signed)
        if ty in PUBKEY_TYPES:
            return str(Pubkey.from_bytes(reader.take(32)))
        if ty in ("string", "bytes"):
            length = struct.unpack("<I", reader.take(4))[0]
            raw = reader.take(length)
            if ty == "bytes":
                return raw
            try:
                return raw.decode("utf-8")
            except UnicodeDecodeError as e:
                raise LayoutError(f"invalid utf-8 string: {e}") from e
        raise LayoutError(f"unsupported type: {ty}")

    if not isinstance(ty, dict):
        raise LayoutError(f"unsupported type: {ty!r}")

    if "array" in ty:
        inner, length = ty["array"]
        if inner == "u8":
            return list(reader.take(int(length)))
        return [decode_type(inner, reader, registry) for _ in range(int(length))]

    if "vec" in ty:
        length = struct.unpack("<I", reader.take(4))[0]
        return [decode_type(ty["vec"], reader, registry) for _ in range(length)]

    if "option" in ty:
        flag = reader.take(1)[0]
        return decode_type(ty["option"], reader, registry) if flag else None

    if "defined" in ty:
        name = defined_name(ty)
        type_def = registry.get(name)
        if type_def is None:
            raise LayoutError(f"unknown defined type: {name}")
        return decode_definition(type_def, reader, registry)

    raise LayoutError(f"unsupported type: {ty!r}")


def decode_fields(
    fields: list[Any], reader: Reader, registry: dict[str, dict[str, Any]]
) -> dict[str, Any]:
    values: dict[str, Any] = {}
    for index, entry in enumerate(fields):
        if isinstance(entry, dict) and "name" in entry:
            values[snake_case(entry["name"])] = decode_type(entry["type"], reader, registry)
        else:
            # tuple struct
            values[str(index)] = decode_type(entry, reader, registry)
    return values


def decode_definition(
    type_def: dict[str, Any], reader: Reader, registry: dict[str, dict[str, Any]]
) -> Any:
    kind = type_def.get("kind")
    if kind == "struct":
        return decode_fields(type_def.get("fields") or [], reader, registry)
    if kind == "enum":
        variants = type_def.get("variants") or []
        index = reader.take(1)[0]
        if index >= len(variants):
            raise LayoutError(f"enum variant {index} out of range")
        variant = variants[index]
        if not variant.get("fields"):
            return variant["name"]
        return {variant["name"]: decode_fields(variant["fields"], reader, registry)}
    raise LayoutError(f"unsupported type kind: {kind}")


def decode_struct(
    fields: list[Any],
    data: bytes,
    offset: int = 0,
    registry: dict[str, dict[str, Any]] | None = None,
) -> dict[str, Any]:
    return decode_fields(fields, Reader(data, offset), registry or {})
