"""Execution data module - the JaCoCo .exec format and in-memory stores."""

from .execfile import (
    ExecutionDataReader,
    ExecutionDataWriter,
    read_exec_file,
    write_exec_file,
)
from .store import ExecutionData, ExecutionDataStore, SessionInfo, SessionInfoStore

__all__ = [
    "ExecutionDataReader",
    "ExecutionDataWriter",
    "read_exec_file",
    "write_exec_file",
    "ExecutionData",
    "ExecutionDataStore",
    "SessionInfo",
    "SessionInfoStore",
]
