"""Class analysis module - matches compiled classes against execution data."""

from .analyzer import Analyzer, CoverageBuilder, analyze_class_file
from .classfile import parse_class
from .crc64 import class_id
from .model import (
    BundleCoverage,
    ClassCoverage,
    Counter,
    CounterEntity,
    GroupCoverage,
    MethodCoverage,
    PackageCoverage,
    SourceFileCoverage,
)

__all__ = [
    "Analyzer",
    "CoverageBuilder",
    "analyze_class_file",
    "parse_class",
    "class_id",
    "BundleCoverage",
    "ClassCoverage",
    "Counter",
    "CounterEntity",
    "GroupCoverage",
    "MethodCoverage",
    "PackageCoverage",
    "SourceFileCoverage",
]
