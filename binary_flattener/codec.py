"""Payload codecs.

A codec turns executable bytes into literal text that can be pasted into a
generated source file, and back:

- :class:`Base64Codec` emits standard padded base64, wrapped into fixed-width
  lines. It is meant for languages without a convenient byte-array syntax.
- :class:`ByteArrayCodec` emits ``0xNN,`` elements suitable for a native
  byte-array literal (e.g. Rust's ``[u8; N]``).

Both decoders ignore ASCII whitespace and raise :class:`CorruptPayloadError`
instead of silently truncating malformed input.
"""

from dataclasses import dataclass
import base64
import binascii
import re
from typing import Protocol


class CorruptPayloadError(ValueError):
    """Raised when a literal cannot be decoded back into bytes."""


class PayloadCodec(Protocol):
    """Interface shared by all payload codecs."""

    name: str

    def encode(self, data: bytes) -> str: ...

    def decode(self, literal: str) -> bytes: ...


_BASE64_RE: re.Pattern[str] = re.compile(r"^[A-Za-z0-9+/]*={0,2}$")
_ARRAY_ITEM_RE: re.Pattern[str] = re.compile(r"^(?:0[xX][0-9a-fA-F]{1,2}|[0-9]{1,3})$")


def _strip_whitespace(literal: str) -> str:
    """Drop every whitespace character, including the wrapping newlines."""

    return "".join(literal.split())


@dataclass(frozen=True, slots=True)
class Base64Codec:
    """Dense printable encoding.

    :ivar name: Codec name.
    :ivar wrap_width: Line width of the encoded text.
    """

    name: str = "base64"
    wrap_width: int = 88

    def encode(self, data: bytes) -> str:
        """Encode bytes into wrapped base64 text.

        :param data: Raw bytes.
        :returns: Base64 text, one line per ``wrap_width`` characters.
        """

        b64: str = base64.b64encode(data).decode("ascii")
        lines: list[str] = []
        i: int = 0
        while i < len(b64):
            lines.append(b64[i : i + self.wrap_width])
            i += self.wrap_width
        return "\n".join(lines)

    def decode(self, literal: str) -> bytes:
        """Decode base64 text produced by :meth:`encode`.

        :param literal: Base64 text (whitespace is ignored).
        :returns: Decoded bytes.
        :raises CorruptPayloadError: If the length or alphabet is invalid.
        """

        compact: str = _strip_whitespace(literal)
        if len(compact) % 4 != 0:
            raise CorruptPayloadError(
                f"base64 literal length {len(compact)} is not a multiple of 4"
            )
        if _BASE64_RE.match(compact) is None:
            raise CorruptPayloadError("base64 literal contains characters outside the alphabet")
        try:
            return base64.b64decode(compact.encode("ascii"), validate=True)
        except binascii.Error as exc:
            raise CorruptPayloadError(f"invalid base64 literal: {exc}") from exc


@dataclass(frozen=True, slots=True)
class ByteArrayCodec:
    """Numeric byte-array encoding.

    :ivar name: Codec name.
    :ivar per_line: Number of elements per line.
    :ivar indent: Leading whitespace of every line.
    """

    name: str = "byte-array"
    per_line: int = 16
    indent: str = "    "

    def encode(self, data: bytes) -> str:
        """Encode bytes as ``0xNN,`` elements.

        :param data: Raw bytes.
        :returns: Array body text (without brackets).
        """

        lines: list[str] = []
        for i in range(0, len(data), self.per_line):
            chunk: bytes = data[i : i + self.per_line]
            lines.append(self.indent + " ".join(f"0x{b:02x}," for b in chunk))
        return "\n".join(lines)

    def decode(self, literal: str) -> bytes:
        """Decode an array body produced by :meth:`encode`.

        Hex (``0x7f``) and decimal (``127``) elements are accepted. A single
        trailing comma is allowed.

        :param literal: Array body text.
        :returns: Decoded bytes.
        :raises CorruptPayloadError: If an element is malformed or out of range.
        """

        compact: str = _strip_whitespace(literal)
        if compact == "":
            return b""

        items: list[str] = compact.split(",")
        if items[-1] == "":
            items.pop()

        out: bytearray = bytearray()
        for pos, item in enumerate(items):
            if _ARRAY_ITEM_RE.match(item) is None:
                raise CorruptPayloadError(f"invalid byte-array element #{pos}: {item!r}")
            value: int = int(item, 0) if item.lower().startswith("0x") else int(item, 10)
            if value > 255:
                raise CorruptPayloadError(f"byte-array element #{pos} out of range: {value}")
            out.append(value)
        return bytes(out)
