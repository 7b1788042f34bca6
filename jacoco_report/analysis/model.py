"""
Coverage model: counters and the bundle -> package -> class -> method tree.

Every node carries six counters (instructions, branches, lines,
complexity, methods, classes). Source nodes (methods, classes and source
files) additionally keep per-line counters.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


UNKNOWN_LINE = -1

# Line / counter status flags
EMPTY = 0
NOT_COVERED = 1
FULLY_COVERED = 2
PARTLY_COVERED = NOT_COVERED | FULLY_COVERED


class CounterEntity(Enum):
    INSTRUCTION = "Instructions"
    BRANCH = "Branches"
    LINE = "Lines"
    COMPLEXITY = "Complexity"
    METHOD = "Methods"
    CLASS = "Classes"


class ElementType(Enum):
    GROUP = "group"
    BUNDLE = "bundle"
    PACKAGE = "package"
    SOURCEFILE = "sourcefile"
    CLASS = "class"
    METHOD = "method"


@dataclass(frozen=True)
class Counter:
    """Number of missed and covered items."""
    missed: int = 0
    covered: int = 0

    @property
    def total(self) -> int:
        return self.missed + self.covered

    @property
    def covered_ratio(self) -> Optional[float]:
        """Covered / total, None if there is nothing to count."""
        return self.covered / self.total if self.total else None

    @property
    def missed_ratio(self) -> Optional[float]:
        return self.missed / self.total if self.total else None

    @property
    def status(self) -> int:
        status = FULLY_COVERED if self.covered > 0 else EMPTY
        if self.missed > 0:
            status |= NOT_COVERED
        return status

    def increment(self, missed: int, covered: int) -> "Counter":
        return Counter(self.missed + missed, self.covered + covered)

    def __add__(self, other: "Counter") -> "Counter":
        return Counter(self.missed + other.missed, self.covered + other.covered)


COUNTER_0_0 = Counter(0, 0)
COUNTER_1_0 = Counter(1, 0)
COUNTER_0_1 = Counter(0, 1)


@dataclass(frozen=True)
class Line:
    """Instruction and branch counters of a single source line."""
    instructions: Counter = COUNTER_0_0
    branches: Counter = COUNTER_0_0

    @property
    def status(self) -> int:
        return self.instructions.status | self.branches.status

    def increment(self, instructions: Counter, branches: Counter) -> "Line":
        return Line(self.instructions + instructions, self.branches + branches)


class CoverageNode:
    """A named node of the coverage tree with its six counters."""

    def __init__(self, element_type: ElementType, name: str):
        self.element_type = element_type
        self.name = name
        self.instruction_counter = COUNTER_0_0
        self.branch_counter = COUNTER_0_0
        self.line_counter = COUNTER_0_0
        self.complexity_counter = COUNTER_0_0
        self.method_counter = COUNTER_0_0
        self.class_counter = COUNTER_0_0

    def get_counter(self, entity: CounterEntity) -> Counter:
        return {
            CounterEntity.INSTRUCTION: self.instruction_counter,
            CounterEntity.BRANCH: self.branch_counter,
            CounterEntity.LINE: self.line_counter,
            CounterEntity.COMPLEXITY: self.complexity_counter,
            CounterEntity.METHOD: self.method_counter,
            CounterEntity.CLASS: self.class_counter,
        }[entity]

    @property
    def contains_code(self) -> bool:
        return self.instruction_counter.total > 0

    def increment(self, child: "CoverageNode") -> None:
        """Add all counters of child to this node."""
        self.instruction_counter += child.instruction_counter
        self.branch_counter += child.branch_counter
        self.line_counter += child.line_counter
        self.complexity_counter += child.complexity_counter
        self.method_counter += child.method_counter
        self.class_counter += child.class_counter

    def increment_all(self, children) -> None:
        for child in children:
            self.increment(child)

    def __repr__(self) -> str:
        return f"{self.name} [{self.element_type.value}]"


class SourceNode(CoverageNode):
    """A node that is backed by source lines."""

    def __init__(self, element_type: ElementType, name: str):
        super().__init__(element_type, name)
        self.lines: dict[int, Line] = {}

    @property
    def first_line(self) -> int:
        return min(self.lines) if self.lines else UNKNOWN_LINE

    @property
    def last_line(self) -> int:
        return max(self.lines) if self.lines else UNKNOWN_LINE

    def get_line(self, nr: int) -> Line:
        return self.lines.get(nr, Line())

    def increment_instructions(self, instructions: Counter, branches: Counter, line: int) -> None:
        """Add the counters of one instruction located at line."""
        if line != UNKNOWN_LINE:
            self._increment_line(instructions, branches, line)
        self.instruction_counter += instructions
        self.branch_counter += branches

    def _increment_line(self, instructions: Counter, branches: Counter, nr: int) -> None:
        old = self.get_line(nr)
        self.lines[nr] = old.increment(instructions, branches)

        # A line counts as covered as soon as one of its instructions is
        if instructions.total > 0:
            if instructions.covered == 0:
                if old.instructions.total == 0:
                    self.line_counter += COUNTER_1_0
            else:
                if old.instructions.total == 0:
                    self.line_counter += COUNTER_0_1
                elif old.instructions.covered == 0:
                    self.line_counter = self.line_counter.increment(-1, 1)

    def increment(self, child: CoverageNode) -> None:
        if isinstance(child, SourceNode):
            self.instruction_counter += child.instruction_counter
            self.branch_counter += child.branch_counter
            self.complexity_counter += child.complexity_counter
            self.method_counter += child.method_counter
            self.class_counter += child.class_counter
            for nr, line in child.lines.items():
                self._increment_line(line.instructions, line.branches, nr)
        else:
            super().increment(child)


class MethodCoverage(SourceNode):

    def __init__(self, name: str, desc: str, signature: Optional[str] = None):
        super().__init__(ElementType.METHOD, name)
        self.desc = desc
        self.signature = signature

    def increment_instructions(self, instructions: Counter, branches: Counter, line: int) -> None:
        super().increment_instructions(instructions, branches, line)
        # Every additional branch adds one decision point
        if branches.total > 1:
            c = max(0, branches.covered - 1)
            m = max(0, branches.total - c - 1)
            self.complexity_counter = self.complexity_counter.increment(m, c)

    def increment_method_counter(self) -> None:
        """Count the method itself once all instructions have been added."""
        base = COUNTER_1_0 if self.instruction_counter.covered == 0 else COUNTER_0_1
        self.method_counter += base
        self.complexity_counter += base


class ClassCoverage(SourceNode):

    def __init__(self, name: str, id: int, no_match: bool = False):
        super().__init__(ElementType.CLASS, name)
        self.id = id
        self.no_match = no_match
        self.methods: list[MethodCoverage] = []
        self.signature: Optional[str] = None
        self.super_name: Optional[str] = None
        self.interface_names: list[str] = []
        self.source_file_name: Optional[str] = None

    @property
    def package_name(self) -> str:
        pos = self.name.rfind('/')
        return self.name[:pos] if pos >= 0 else ""

    @property
    def simple_name(self) -> str:
        return self.name[self.name.rfind('/') + 1:]

    def add_method(self, method: MethodCoverage) -> None:
        self.methods.append(method)
        self.increment(method)
        # A class is covered as soon as one of its methods is
        if self.method_counter.covered > 0:
            self.class_counter = COUNTER_0_1
        else:
            self.class_counter = COUNTER_1_0


class SourceFileCoverage(SourceNode):

    def __init__(self, name: str, package_name: str):
        super().__init__(ElementType.SOURCEFILE, name)
        self.package_name = package_name


class PackageCoverage(CoverageNode):

    def __init__(self, name: str, classes: list[ClassCoverage], source_files: list[SourceFileCoverage]):
        super().__init__(ElementType.PACKAGE, name)
        self.classes = classes
        self.source_files = source_files
        self.increment_all(source_files)
        # Classes with a source file are already counted through it
        for c in classes:
            if c.source_file_name is None:
                self.increment(c)


class BundleCoverage(CoverageNode):
    """Coverage of one project: all of its packages."""

    def __init__(self, name: str, packages: list[PackageCoverage]):
        super().__init__(ElementType.BUNDLE, name)
        self.packages = packages
        self.increment_all(packages)

    @classmethod
    def from_classes(
        cls,
        name: str,
        classes: list[ClassCoverage],
        source_files: list[SourceFileCoverage],
    ) -> "BundleCoverage":
        """Group classes and source files into packages."""
        class_groups: dict[str, list[ClassCoverage]] = {}
        for c in classes:
            class_groups.setdefault(c.package_name, []).append(c)
        source_groups: dict[str, list[SourceFileCoverage]] = {}
        for s in source_files:
            source_groups.setdefault(s.package_name, []).append(s)

        packages = []
        for package_name in sorted(set(class_groups) | set(source_groups)):
            packages.append(PackageCoverage(
                package_name,
                sorted(class_groups.get(package_name, []), key=lambda c: c.name),
                sorted(source_groups.get(package_name, []), key=lambda s: s.name),
            ))
        return cls(name, packages)

    @property
    def classes(self) -> list[ClassCoverage]:
        return [c for p in self.packages for c in p.classes]


class GroupCoverage(CoverageNode):
    """Several bundles shown together under one name."""

    def __init__(self, name: str, bundles: list[BundleCoverage]):
        super().__init__(ElementType.GROUP, name)
        self.bundles = bundles
        self.increment_all(bundles)
