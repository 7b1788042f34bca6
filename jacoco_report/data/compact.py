"""
Primitive encodings used by the execution data format.

Besides the usual big endian integers the format uses:
    - variable length integers (7 bits per byte, low bits first)
    - boolean arrays packed 8 per byte, least significant bit first
    - strings in Java's modified UTF-8 with an u2 length prefix
"""

import struct
from typing import BinaryIO

from ..errors import ExecDataFormatError


def encode_modified_utf8(text: str) -> bytes:
    """Encode text the way java.io.DataOutput.writeUTF does (without length)."""
    out = bytearray()
    # Supplementary characters become surrogate pairs, each encoded on its own
    utf16 = text.encode('utf-16-be', 'surrogatepass')
    for i in range(0, len(utf16), 2):
        c = (utf16[i] << 8) | utf16[i + 1]
        if 0x0001 <= c <= 0x007F:
            out.append(c)
        elif c <= 0x07FF:
            out.append(0xC0 | (c >> 6))
            out.append(0x80 | (c & 0x3F))
        else:
            out.append(0xE0 | (c >> 12))
            out.append(0x80 | ((c >> 6) & 0x3F))
            out.append(0x80 | (c & 0x3F))
    return bytes(out)


def decode_modified_utf8(data: bytes) -> str:
    """Decode Java modified UTF-8 (as used in class files and DataInput)."""
    try:
        return data.decode('utf-8')
    except UnicodeDecodeError:
        pass
    # Slow path: embedded NUL as C0 80 and CESU-8 surrogate pairs
    units = []
    i = 0
    n = len(data)
    while i < n:
        b = data[i]
        if b < 0x80:
            units.append(b)
            i += 1
        elif (b & 0xE0) == 0xC0 and i + 1 < n:
            units.append(((b & 0x1F) << 6) | (data[i + 1] & 0x3F))
            i += 2
        elif (b & 0xF0) == 0xE0 and i + 2 < n:
            units.append(((b & 0x0F) << 12) | ((data[i + 1] & 0x3F) << 6) | (data[i + 2] & 0x3F))
            i += 3
        else:
            raise UnicodeDecodeError('modified-utf-8', data, i, i + 1, 'invalid start byte')
    raw = b''.join(struct.pack('>H', u) for u in units)
    return raw.decode('utf-16-be', 'surrogatepass')


class CompactDataInput:
    """Reads the primitive encodings from a binary stream."""

    def __init__(self, stream: BinaryIO):
        self.stream = stream

    def read_exactly(self, size: int) -> bytes:
        data = self.stream.read(size)
        if len(data) != size:
            raise ExecDataFormatError(
                f"Unexpected end of execution data (wanted {size} bytes, got {len(data)})"
            )
        return data

    def read_byte(self) -> int:
        return self.read_exactly(1)[0]

    def read_char(self) -> int:
        return struct.unpack('>H', self.read_exactly(2))[0]

    def read_long(self) -> int:
        return struct.unpack('>q', self.read_exactly(8))[0]

    def read_unsigned_long(self) -> int:
        return struct.unpack('>Q', self.read_exactly(8))[0]

    def read_utf(self) -> str:
        length = self.read_char()
        try:
            return decode_modified_utf8(self.read_exactly(length))
        except UnicodeDecodeError as e:
            raise ExecDataFormatError(f"Malformed string in execution data: {e}") from e

    def read_var_int(self) -> int:
        value = self.read_byte()
        if (value & 0x80) == 0:
            return value
        return (value & 0x7F) | (self.read_var_int() << 7)

    def read_boolean_array(self) -> list[bool]:
        length = self.read_var_int()
        probes = []
        buffer = 0
        for i in range(length):
            if i % 8 == 0:
                buffer = self.read_byte()
            probes.append((buffer & 0x01) != 0)
            buffer >>= 1
        return probes


class CompactDataOutput:
    """Writes the primitive encodings to a binary stream."""

    def __init__(self, stream: BinaryIO):
        self.stream = stream

    def write_byte(self, value: int) -> None:
        self.stream.write(bytes((value & 0xFF,)))

    def write_char(self, value: int) -> None:
        self.stream.write(struct.pack('>H', value))

    def write_long(self, value: int) -> None:
        self.stream.write(struct.pack('>q', value))

    def write_unsigned_long(self, value: int) -> None:
        self.stream.write(struct.pack('>Q', value & 0xFFFFFFFFFFFFFFFF))

    def write_utf(self, text: str) -> None:
        encoded = encode_modified_utf8(text)
        if len(encoded) > 0xFFFF:
            raise ValueError(f"String too long for execution data: {len(encoded)} bytes")
        self.write_char(len(encoded))
        self.stream.write(encoded)

    def write_var_int(self, value: int) -> None:
        while value & ~0x7F:
            self.write_byte(0x80 | (value & 0x7F))
            value >>= 7
        self.write_byte(value)

    def write_boolean_array(self, values: list[bool]) -> None:
        self.write_var_int(len(values))
        buffer = 0
        size = 0
        for value in values:
            if value:
                buffer |= 0x01 << size
            size += 1
            if size == 8:
                self.write_byte(buffer)
                buffer = 0
                size = 0
        if size > 0:
            self.write_byte(buffer)
