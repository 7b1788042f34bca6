"""
Analysis of compiled classes against loaded execution data.

The Analyzer walks directories, archives and class files, matches every
class to its execution data through the CRC64 class id and hands the
resulting ClassCoverage to a visitor, usually a CoverageBuilder which then
assembles the bundle for one project.
"""

import gzip
import io
import itertools
import os
import struct
import zipfile
import zlib
from pathlib import Path
from typing import Callable, Optional

from .classfile import ACC_MODULE, ACC_SYNTHETIC, CLASS_MAGIC, ClassFile, parse_class
from .crc64 import class_id
from .filters import is_filtered
from .method import MethodAnalyzer
from .model import BundleCoverage, ClassCoverage, MethodCoverage, SourceFileCoverage
from ..data.store import ExecutionDataStore
from ..errors import AnalysisError, JacocoReportError


ZIP_MAGIC = b'PK\x03\x04'
GZIP_MAGIC = b'\x1f\x8b'

# Major versions of class files from Java 1.1 onwards
MIN_CLASS_VERSION = 45
MAX_CLASS_VERSION = 99

DATA_FIELD_NAME = "$jacocoData"
INIT_METHOD_NAME = "$jacocoInit"


def analyze_class_file(
    class_file: ClassFile,
    id: int,
    probes: Optional[list[bool]],
    no_match: bool = False,
) -> ClassCoverage:
    """
    Compute the coverage of one parsed class.

    Args:
        class_file: the parsed class
        id: CRC64 id of the class bytes
        probes: recorded probe array, None if the class was never executed
        no_match: execution data exists for this name but with another id
    """
    for f in class_file.fields:
        if f.name == DATA_FIELD_NAME:
            raise AnalysisError(_instrumented_message(class_file.name))

    coverage = ClassCoverage(class_file.name, id, no_match)
    coverage.signature = class_file.signature
    coverage.super_name = class_file.super_name
    coverage.interface_names = list(class_file.interfaces)
    coverage.source_file_name = class_file.source_file

    probe_ids = itertools.count()
    analyzer = MethodAnalyzer(probes, lambda: next(probe_ids))
    for method in class_file.methods:
        if method.name == INIT_METHOD_NAME:
            raise AnalysisError(_instrumented_message(class_file.name))
        # Probe ids are consumed even for methods that end up filtered
        insns, instructions = analyzer.analyze(method)
        if not instructions or is_filtered(class_file, method, insns):
            continue
        method_coverage = MethodCoverage(method.name, method.descriptor, method.signature)
        for insn in instructions:
            method_coverage.increment_instructions(
                insn.instruction_counter, insn.branch_counter, insn.line
            )
        method_coverage.increment_method_counter()
        if method_coverage.contains_code:
            coverage.add_method(method_coverage)
    return coverage


def _instrumented_message(name: str) -> str:
    return (
        f"Cannot process instrumented class {name}. "
        "Please supply original non-instrumented classes."
    )


class CoverageBuilder:
    """Collects analyzed classes and builds a bundle from them."""

    def __init__(self):
        self._classes: dict[str, ClassCoverage] = {}
        self._source_files: dict[tuple[str, str], SourceFileCoverage] = {}

    def visit_coverage(self, coverage: ClassCoverage) -> None:
        # Interfaces and the like without any code are not reported
        if not coverage.contains_code:
            return
        dup = self._classes.get(coverage.name)
        if dup is not None:
            if dup.id != coverage.id:
                raise AnalysisError(f"Can't add different class with same name: {coverage.name}")
            return
        self._classes[coverage.name] = coverage
        if coverage.source_file_name is not None:
            key = (coverage.package_name, coverage.source_file_name)
            source_file = self._source_files.get(key)
            if source_file is None:
                source_file = SourceFileCoverage(coverage.source_file_name, coverage.package_name)
                self._source_files[key] = source_file
            source_file.increment(coverage)

    @property
    def classes(self) -> list[ClassCoverage]:
        return list(self._classes.values())

    @property
    def source_files(self) -> list[SourceFileCoverage]:
        return list(self._source_files.values())

    @property
    def no_match_classes(self) -> list[ClassCoverage]:
        return [c for c in self._classes.values() if c.no_match]

    def get_bundle(self, name: str) -> BundleCoverage:
        return BundleCoverage.from_classes(name, self.classes, self.source_files)


class Analyzer:
    """
    Matches compiled classes against an ExecutionDataStore.

    Usage:
        builder = CoverageBuilder()
        Analyzer(store, builder.visit_coverage).analyze_all(Path("build/classes"))
        bundle = builder.get_bundle("my-project")
    """

    def __init__(
        self,
        execution_data: ExecutionDataStore,
        coverage_visitor: Callable[[ClassCoverage], None],
    ):
        self.execution_data = execution_data
        self.coverage_visitor = coverage_visitor

    def analyze_class(self, data: bytes, location: str) -> None:
        """Analyze the raw bytes of one class file."""
        try:
            class_file = parse_class(data)
            if class_file.has_flag(ACC_MODULE) or class_file.has_flag(ACC_SYNTHETIC):
                return
            id = class_id(data)
            execution_data = self.execution_data.get(id)
            if execution_data is None:
                probes = None
                no_match = self.execution_data.contains(class_file.name)
            else:
                probes = execution_data.probes
                no_match = False
            coverage = analyze_class_file(class_file, id, probes, no_match)
        except JacocoReportError as e:
            raise AnalysisError(f"Error while analyzing {location}: {e}") from e
        self.coverage_visitor(coverage)

    def analyze_bytes(self, data: bytes, location: str) -> int:
        """
        Analyze a class file, a zip/jar archive or a gzip stream.

        Returns:
            Number of class files found; unknown content is ignored
        """
        if data.startswith(ZIP_MAGIC):
            return self._analyze_zip(data, location)
        if data.startswith(GZIP_MAGIC):
            try:
                inflated = gzip.decompress(data)
            except (OSError, EOFError, zlib.error) as e:
                raise AnalysisError(f"Error while analyzing {location}: {e}") from e
            return self.analyze_bytes(inflated, location)
        if _is_class_file(data):
            self.analyze_class(data, location)
            return 1
        return 0

    def _analyze_zip(self, data: bytes, location: str) -> int:
        count = 0
        try:
            with zipfile.ZipFile(io.BytesIO(data)) as archive:
                for info in archive.infolist():
                    if info.is_dir():
                        continue
                    count += self.analyze_bytes(archive.read(info), f"{location}@{info.filename}")
        except (zipfile.BadZipFile, zlib.error, EOFError) as e:
            raise AnalysisError(f"Error while analyzing {location}: {e}") from e
        return count

    def analyze_all(self, path: Path) -> int:
        """
        Analyze a directory tree, archive or class file.

        Returns:
            Number of class files found

        Raises:
            AnalysisError: if path does not exist or cannot be read
        """
        path = Path(path)
        if path.is_dir():
            count = 0
            try:
                children = sorted(os.listdir(path))
            except OSError as e:
                raise AnalysisError(f"Cannot list directory {path}: {e}") from e
            for child in children:
                count += self.analyze_all(path / child)
            return count
        if not path.exists():
            raise AnalysisError(f"No such file or directory: {path}")
        try:
            data = path.read_bytes()
        except OSError as e:
            raise AnalysisError(f"Cannot read {path}: {e}") from e
        return self.analyze_bytes(data, str(path))


def _is_class_file(data: bytes) -> bool:
    if len(data) < 8:
        return False
    magic, _, major = struct.unpack_from('>IHH', data)
    return magic == CLASS_MAGIC and MIN_CLASS_VERSION <= major <= MAX_CLASS_VERSION
