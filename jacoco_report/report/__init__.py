"""Report module - source lookup and HTML rendering."""

from .assembler import BundleAndProject, ReportConfig, create_html_report
from .html import HTMLReportWriter
from .locator import MultiDirectorySourceFileLocator

__all__ = [
    "BundleAndProject",
    "ReportConfig",
    "create_html_report",
    "HTMLReportWriter",
    "MultiDirectorySourceFileLocator",
]
