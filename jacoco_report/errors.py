"""Exceptions raised while loading execution data and analyzing classes."""


class JacocoReportError(Exception):
    """Base class for all errors raised by this package."""


class ExecDataFormatError(JacocoReportError):
    """An execution data stream is malformed or truncated."""


class IncompatibleExecDataVersionError(ExecDataFormatError):
    """An execution data stream was written with another format version."""

    def __init__(self, actual_version: int, expected_version: int):
        self.actual_version = actual_version
        self.expected_version = expected_version
        super().__init__(
            f"Cannot read execution data version 0x{actual_version:x}. "
            f"This version of the report tool requires version 0x{expected_version:x}."
        )


class IncompatibleExecDataError(JacocoReportError):
    """Two execution data records with the same id cannot be merged."""


class ClassFormatError(JacocoReportError):
    """A class file could not be parsed."""


class AnalysisError(JacocoReportError, OSError):
    """Compiled classes could not be read or analyzed."""
