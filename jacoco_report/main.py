"""
JaCoCo Report - Main CLI entry point.

Report pipeline:
1. Load all execution data files (in order) into one store
2. Analyze the compiled classes of each project against that store
3. Render one HTML report grouping all projects

NOTE: Any failure aborts the run. A failed run may leave a partially
written report directory behind.
"""

import argparse
import codecs
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .analysis.analyzer import Analyzer, CoverageBuilder
from .analysis.model import BundleCoverage
from .data.execfile import ExecutionDataReader
from .data.store import ExecutionDataStore, SessionInfoStore
from .errors import JacocoReportError
from .report.assembler import BundleAndProject, ReportConfig, create_html_report


@dataclass(frozen=True)
class ProjectSpec:
    """A project: its source directory and the directory of its compiled classes."""
    src_dir: Path
    bin_dir: Path

    @classmethod
    def parse(cls, spec: str) -> "ProjectSpec":
        """
        Parse a specification string of the form "project-dir:binary-dir".

        A spec with more than one colon is rejected rather than split on
        its first colon: "a:b:c" is ambiguous, and a malformed spec must
        fail before any work starts. Paths containing a colon (such as
        Windows drive letters) cannot be expressed.

        Raises:
            ValueError: unless spec has exactly one colon with text on both sides
        """
        parts = spec.split(":")
        if len(parts) != 2 or not parts[0] or not parts[1]:
            raise ValueError(f"Unsupported project specification: {spec}")
        return cls(Path(parts[0]), Path(parts[1]))

    @property
    def name(self) -> str:
        """Bundle name: the base name of the source directory."""
        return self.src_dir.name or self.src_dir.resolve().name


def _project_spec(value: str) -> ProjectSpec:
    try:
        return ProjectSpec.parse(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e)) from e


def _encoding(value: str) -> str:
    try:
        codecs.lookup(value)
    except LookupError as e:
        raise argparse.ArgumentTypeError(f"Unknown encoding: {value}") from e
    return value


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        prog="jacoco-report",
        description="Create an HTML coverage report from JaCoCo execution data",
    )
    parser.add_argument(
        "projects", nargs="+", type=_project_spec, metavar="SRC:BIN",
        help="The project directories to analyse, as <source-dir>:<binary-dir>",
    )
    parser.add_argument(
        "--in", dest="inputs", action="append", required=True, type=Path, metavar="FILE",
        help="Input coverage file produced by JaCoCo (repeatable)",
    )
    parser.add_argument("--out", default=Path("coverage"), type=Path, help="Output directory")
    parser.add_argument("--name", default=ReportConfig.group_name, help="Name of the report group")
    parser.add_argument(
        "--source-subdir", dest="source_subdirs", action="append", metavar="DIR",
        help="Source folder below each project directory, probed in order "
             "(repeatable, default: src, src_gen)",
    )
    parser.add_argument("--encoding", type=_encoding, default=ReportConfig.encoding, help="Source file encoding")
    parser.add_argument("--tab-width", type=int, default=ReportConfig.tab_width, help="Tab width for sources")
    parser.add_argument("--verbose", action="store_true", help="Enable verbose logging")
    return parser.parse_args(argv)


def log(msg, verbose=True, end="\n"):
    if verbose:
        print(f"[REPORT] {msg}", end=end, flush=True)


def log_ok():
    print("OK", flush=True)


class JacocoReport:
    """
    Owns the execution data and session stores of one report run.

    Usage:
        report = JacocoReport()
        report.make_report(Path("coverage"), [ProjectSpec.parse("a:a/bin")], [Path("a.exec")])
    """

    def __init__(self, config: Optional[ReportConfig] = None, verbose: bool = False):
        self.config = config or ReportConfig()
        self.verbose = verbose
        self.execution_data_store = ExecutionDataStore()
        self.session_info_store = SessionInfoStore()

    def load_execution_data(self, path: Path) -> None:
        """Merge one .exec file into the stores."""
        with open(path, 'rb') as f:
            reader = ExecutionDataReader(
                f,
                session_visitor=self.session_info_store.visit_session_info,
                execution_visitor=self.execution_data_store.put,
            )
            while reader.read():
                pass

    def analyse_project(self, bin_dir: Path, name: str) -> BundleCoverage:
        """Analyze all classes below bin_dir into a bundle called name."""
        builder = CoverageBuilder()
        analyzer = Analyzer(self.execution_data_store, builder.visit_coverage)
        count = analyzer.analyze_all(bin_dir)
        log(f"{count} class files, {len(builder.classes)} classes with code", self.verbose)
        if builder.no_match_classes:
            log(f"{len(builder.no_match_classes)} classes do not match their execution data", self.verbose)
        return builder.get_bundle(name)

    def create_html_report(self, report_dir: Path, bundles: list[BundleAndProject]) -> None:
        create_html_report(
            report_dir,
            bundles,
            self.session_info_store.infos,
            self.execution_data_store.contents,
            self.config,
        )

    def make_report(self, report_dir: Path, projects: list[ProjectSpec], exec_files: list[Path]) -> None:
        for exec_file in exec_files:
            log(f"Loading '{Path(exec_file).name}'... ", end="")
            self.load_execution_data(exec_file)
            log_ok()
        log(
            f"{len(self.execution_data_store)} classes in {len(self.session_info_store)} sessions",
            self.verbose,
        )

        bundles = []
        names = set()
        for project in projects:
            log(f"Analyzing project '{project.src_dir}'... ", end="")
            bundle = self.analyse_project(project.bin_dir, project.name)
            bundles.append(BundleAndProject(bundle, project.src_dir))
            log_ok()
            if project.name in names:
                log(f"WARNING: more than one project named '{project.name}', "
                    f"their report pages overwrite each other", True)
            names.add(project.name)

        log("Creating HTML report... ", end="")
        self.create_html_report(report_dir, bundles)
        log_ok()


def main(argv=None):
    args = parse_args(argv)

    config = ReportConfig(
        group_name=args.name,
        source_subdirs=tuple(args.source_subdirs) if args.source_subdirs else ReportConfig.source_subdirs,
        encoding=args.encoding,
        tab_width=args.tab_width,
    )

    for path in args.inputs:
        if not path.is_file():
            print(f"Error: --in path does not exist: {path}", file=sys.stderr)
            sys.exit(1)

    try:
        JacocoReport(config, args.verbose).make_report(args.out, args.projects, args.inputs)
    except (JacocoReportError, OSError) as e:
        print(f"\nError: {e}", file=sys.stderr)
        sys.exit(1)

    log(f"Report written to {args.out.resolve() / 'index.html'}", args.verbose)
    return 0


if __name__ == "__main__":
    main()
