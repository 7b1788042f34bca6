"""
CRC64 checksum used as the class id.

The id ties a class file on disk to the execution data recorded for it.
It has to be bit for bit the value the JaCoCo agent computes, so this is
the same table driven CRC64 with the reversed polynomial 0xd800000000000000.
"""

POLY64REV = 0xD800000000000000
_MASK64 = 0xFFFFFFFFFFFFFFFF

# Major version of Java 9 class files and the version they are hashed as
_V9 = 53
_V1_8 = 52


def _make_table() -> list[int]:
    table = []
    for i in range(256):
        v = i
        for _ in range(8):
            if v & 1:
                v = (v >> 1) ^ POLY64REV
            else:
                v >>= 1
        table.append(v)
    return table


LOOKUP_TABLE = _make_table()


def update(checksum: int, data: bytes, start: int = 0, end: int = None) -> int:
    if end is None:
        end = len(data)
    table = LOOKUP_TABLE
    for b in data[start:end]:
        checksum = (checksum >> 8) ^ table[(checksum ^ b) & 0xFF]
    return checksum & _MASK64


def class_id(data: bytes) -> int:
    """
    Compute the id of a class from its raw class file bytes.

    Early JDK 9 builds did not change the major version in instrumented
    binaries, so Java 9 class files are hashed as if they were Java 8.
    """
    if len(data) > 7 and data[6] == 0x00 and data[7] == _V9:
        checksum = update(0, data, 0, 7)
        checksum = update(checksum, bytes((_V1_8,)))
        return update(checksum, data, 8)
    return update(0, data)
