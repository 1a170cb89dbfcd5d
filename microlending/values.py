"""
values.py - Typed call values

Arguments and results crossing the Client boundary are typed values rather
than bare Python objects, so a call can be checked for arity and types
before it reaches the registry:

    uint(1000)                 -> UInt(1000)
    principal("ST2CY5V3...")   -> Principal("ST2CY5V3...")
    string_ascii("Business")   -> StringAscii("Business")

Values are frozen and compare by content.
"""

from __future__ import annotations
from dataclasses import dataclass
import re
from typing import Any, Optional


UINT_MAX = 2 ** 128 - 1

# c32 alphabet used by Stacks addresses (no I, L, O, U).
_C32 = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"

# Standard principal: S + version char + c32 body; contract principal adds .name
PRINCIPAL_PATTERN = re.compile(
    rf"^S[{_C32}][{_C32}]{{28,41}}(\.[a-zA-Z][a-zA-Z0-9\-_]{{0,39}})?$"
)


class Value:
    """Base class for typed call values."""
    __slots__ = ()

    def to_python(self) -> Any:
        raise NotImplementedError


@dataclass(frozen=True, slots=True)
class UInt(Value):
    """Unsigned 128-bit integer."""
    value: int

    def __post_init__(self):
        if isinstance(self.value, bool) or not isinstance(self.value, int):
            raise ValueError(f"uint requires an int, got {type(self.value).__name__}")
        if not 0 <= self.value <= UINT_MAX:
            raise ValueError(f"uint out of range: {self.value}")

    def to_python(self) -> int:
        return self.value

    def __repr__(self) -> str:
        return f"u{self.value}"


@dataclass(frozen=True, slots=True)
class Principal(Value):
    """A standard or contract principal (account address)."""
    address: str

    def __post_init__(self):
        if not isinstance(self.address, str) or not PRINCIPAL_PATTERN.match(self.address):
            raise ValueError(f"Invalid principal: {self.address!r}")

    @property
    def is_contract(self) -> bool:
        return "." in self.address

    def to_python(self) -> str:
        return self.address

    def __repr__(self) -> str:
        return f"'{self.address}"


@dataclass(frozen=True, slots=True)
class StringAscii(Value):
    """ASCII string, optionally bounded in length."""
    value: str
    max_length: Optional[int] = None

    def __post_init__(self):
        if not isinstance(self.value, str) or not self.value.isascii():
            raise ValueError(f"string-ascii requires ASCII text, got {self.value!r}")
        if self.max_length is not None and len(self.value) > self.max_length:
            raise ValueError(
                f"string-ascii longer than {self.max_length}: {len(self.value)} characters"
            )

    def __eq__(self, other: object) -> bool:
        # The bound is a type annotation, not part of the value.
        if not isinstance(other, StringAscii):
            return NotImplemented
        return self.value == other.value

    def __hash__(self) -> int:
        return hash((StringAscii, self.value))

    def to_python(self) -> str:
        return self.value

    def __repr__(self) -> str:
        return f'"{self.value}"'


def uint(value: int) -> UInt:
    return UInt(value)


def principal(address: str) -> Principal:
    return Principal(address)


def string_ascii(value: str, max_length: Optional[int] = None) -> StringAscii:
    return StringAscii(value, max_length)


def to_python(value: Any) -> Any:
    """
    Unwrap typed values, recursing into dicts, lists and tuples.

    None and plain Python objects pass through unchanged.
    """
    if isinstance(value, Value):
        return value.to_python()
    if isinstance(value, dict):
        return {k: to_python(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return type(value)(to_python(v) for v in value)
    return value
