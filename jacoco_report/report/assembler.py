"""
Assembly of the combined HTML report.

All project bundles end up in one group. Each bundle gets its own source
locator, rooted in the source directory of the project it came from.
"""

from dataclasses import dataclass
from pathlib import Path

from .html import HTMLReportWriter
from .locator import MultiDirectorySourceFileLocator
from ..analysis.model import BundleCoverage, GroupCoverage
from ..data.store import ExecutionData, SessionInfo


@dataclass
class ReportConfig:
    """Configuration of the HTML report."""
    group_name: str = "Graal"
    source_subdirs: tuple[str, ...] = ("src", "src_gen")
    encoding: str = "utf-8"
    tab_width: int = 4


@dataclass
class BundleAndProject:
    """A bundle together with the source directory of its project."""
    bundle: BundleCoverage
    project: Path

    def __str__(self) -> str:
        return str(self.bundle)

    def locator(self, config: ReportConfig) -> MultiDirectorySourceFileLocator:
        return MultiDirectorySourceFileLocator.for_project(
            self.project,
            subdirs=config.source_subdirs,
            encoding=config.encoding,
            tab_width=config.tab_width,
        )


def create_html_report(
    report_dir: Path,
    bundles: list[BundleAndProject],
    sessions: list[SessionInfo],
    execution_data: list[ExecutionData],
    config: ReportConfig = None,
) -> GroupCoverage:
    """
    Write the HTML report for all bundles, in the given order, to report_dir.

    Returns:
        The group that was rendered
    """
    config = config or ReportConfig()
    group = GroupCoverage(config.group_name, [b.bundle for b in bundles])
    locators = [b.locator(config) for b in bundles]

    writer = HTMLReportWriter(Path(report_dir))
    writer.write_resources()
    writer.write_group(group, locators)
    # Written last so executed classes can link to their class pages
    writer.write_sessions(sessions, execution_data, group.name)
    return group
