"""
Reader and writer for JaCoCo execution data (.exec) files.

File layout (all numbers big endian), a sequence of blocks:

    0x01  header         u2 magic 0xC0C0, u2 format version 0x1007
    0x10  session info   utf id, i8 start time, i8 dump time
    0x11  class data     i8 class id, utf class name, boolean[] probes
    0x20  command ok     (written by the agent's TCP server, no payload)

Files can be concatenated, so a header may appear again in the middle of
a stream. The first block of every stream must be a header.
"""

from pathlib import Path
from typing import BinaryIO, Callable, Optional

from .compact import CompactDataInput, CompactDataOutput
from .store import ExecutionData, SessionInfo
from ..errors import ExecDataFormatError, IncompatibleExecDataVersionError


BLOCK_HEADER = 0x01
BLOCK_SESSIONINFO = 0x10
BLOCK_EXECUTIONDATA = 0x11
BLOCK_CMDOK = 0x20

MAGIC_NUMBER = 0xC0C0
FORMAT_VERSION = 0x1007


class ExecutionDataReader:
    """
    Reads execution data blocks and forwards them to visitors.

    Usage:
        with open("jacoco.exec", "rb") as f:
            reader = ExecutionDataReader(f, sessions.visit_session_info, store.put)
            while reader.read():
                pass
    """

    def __init__(
        self,
        stream: BinaryIO,
        session_visitor: Optional[Callable[[SessionInfo], None]] = None,
        execution_visitor: Optional[Callable[[ExecutionData], None]] = None,
    ):
        self.input = CompactDataInput(stream)
        self.session_visitor = session_visitor
        self.execution_visitor = execution_visitor
        self._first_block = True

    def read(self) -> bool:
        """
        Read the next block.

        Returns:
            True if a block was read, False at the end of the stream
        """
        raw = self.input.stream.read(1)
        if not raw:
            return False
        block_type = raw[0]
        if self._first_block and block_type != BLOCK_HEADER:
            raise ExecDataFormatError("Invalid execution data file.")
        self._first_block = False
        self._read_block(block_type)
        return True

    def read_all(self) -> int:
        """Read until the end of the stream, returning the number of blocks."""
        count = 0
        while self.read():
            count += 1
        return count

    def _read_block(self, block_type: int) -> None:
        if block_type == BLOCK_HEADER:
            self._read_header()
        elif block_type == BLOCK_SESSIONINFO:
            self._read_session_info()
        elif block_type == BLOCK_EXECUTIONDATA:
            self._read_execution_data()
        elif block_type == BLOCK_CMDOK:
            pass
        else:
            raise ExecDataFormatError(f"Unknown block type {block_type:x}.")

    def _read_header(self) -> None:
        if self.input.read_char() != MAGIC_NUMBER:
            raise ExecDataFormatError("Invalid execution data file.")
        version = self.input.read_char()
        if version != FORMAT_VERSION:
            raise IncompatibleExecDataVersionError(version, FORMAT_VERSION)

    def _read_session_info(self) -> None:
        info = SessionInfo(
            id=self.input.read_utf(),
            start_timestamp=self.input.read_long(),
            dump_timestamp=self.input.read_long(),
        )
        if self.session_visitor is not None:
            self.session_visitor(info)

    def _read_execution_data(self) -> None:
        data = ExecutionData(
            id=self.input.read_unsigned_long(),
            name=self.input.read_utf(),
            probes=self.input.read_boolean_array(),
        )
        if self.execution_visitor is not None:
            self.execution_visitor(data)


class ExecutionDataWriter:
    """Writes execution data blocks; the header is written immediately."""

    def __init__(self, stream: BinaryIO):
        self.output = CompactDataOutput(stream)
        self.write_header()

    def write_header(self) -> None:
        self.output.write_byte(BLOCK_HEADER)
        self.output.write_char(MAGIC_NUMBER)
        self.output.write_char(FORMAT_VERSION)

    def visit_session_info(self, info: SessionInfo) -> None:
        self.output.write_byte(BLOCK_SESSIONINFO)
        self.output.write_utf(info.id)
        self.output.write_long(info.start_timestamp)
        self.output.write_long(info.dump_timestamp)

    def visit_class_execution(self, data: ExecutionData) -> None:
        # Classes that were never executed carry no information
        if not data.has_hits:
            return
        self.output.write_byte(BLOCK_EXECUTIONDATA)
        self.output.write_unsigned_long(data.id)
        self.output.write_utf(data.name)
        self.output.write_boolean_array(data.probes)


def read_exec_file(
    path: Path,
    session_visitor: Optional[Callable[[SessionInfo], None]] = None,
    execution_visitor: Optional[Callable[[ExecutionData], None]] = None,
) -> int:
    """Read a whole .exec file, returning the number of blocks read."""
    with open(path, 'rb') as f:
        return ExecutionDataReader(f, session_visitor, execution_visitor).read_all()


def write_exec_file(
    path: Path,
    sessions: list[SessionInfo],
    data: list[ExecutionData],
) -> None:
    """Write sessions and class data to a new .exec file."""
    with open(path, 'wb') as f:
        writer = ExecutionDataWriter(f)
        for info in sessions:
            writer.visit_session_info(info)
        for entry in data:
            writer.visit_class_execution(entry)
