"""
HTML rendering of grouped coverage bundles.

Output layout below the report directory:

    index.html                      the group with one row per bundle
    jacoco-sessions.html            sessions and executed classes
    jacoco-resources/report.css
    <bundle>/index.html             packages of the bundle
    <bundle>/<package>/index.html         classes of the package
    <bundle>/<package>/index.source.html  source files of the package
    <bundle>/<package>/<Class>.html       methods of a class
    <bundle>/<package>/<File>.html        annotated source, if it was found

Pages are rendered with Jinja2 templates shipped in the templates/ folder.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from jinja2 import Environment, PackageLoader, select_autoescape

from .locator import MultiDirectorySourceFileLocator
from .. import __version__
from ..analysis.model import (
    FULLY_COVERED,
    NOT_COVERED,
    PARTLY_COVERED,
    BundleCoverage,
    ClassCoverage,
    Counter,
    CoverageNode,
    GroupCoverage,
    Line,
    PackageCoverage,
    SourceFileCoverage,
    UNKNOWN_LINE,
)
from ..data.store import ExecutionData, SessionInfo


RESOURCES_FOLDER = "jacoco-resources"
SESSIONS_PAGE = "jacoco-sessions.html"
DEFAULT_PACKAGE_FOLDER = "default"

_LINE_STYLES = {
    NOT_COVERED: "nc",
    PARTLY_COVERED: "pc",
    FULLY_COVERED: "fc",
}
_BRANCH_STYLES = {
    NOT_COVERED: "bnc",
    PARTLY_COVERED: "bpc",
    FULLY_COVERED: "bfc",
}


def percent(counter: Counter) -> str:
    """Covered ratio rounded down to whole percent, "n/a" for empty counters."""
    if counter.total == 0:
        return "n/a"
    return f"{counter.covered * 100 // counter.total}%"


def bar_width(counter: Counter, maximum: int, width: int = 120) -> int:
    if maximum == 0:
        return 0
    return counter.missed * width // maximum


def package_folder(package_name: str) -> str:
    return package_name.replace('/', '.') if package_name else DEFAULT_PACKAGE_FOLDER


def package_label(package_name: str) -> str:
    return package_name.replace('/', '.') if package_name else "default"


def method_label(name: str, desc: str, class_name: str) -> str:
    """Java-like method name: constructors as the class name, parameter types simplified."""
    if name == "<init>":
        name = class_name[class_name.rfind('/') + 1:].split('$')[-1]
    elif name == "<clinit>":
        return "static {...}"
    params = desc[1:desc.index(')')]
    return f"{name}({', '.join(_parse_parameter_types(params))})"


_PRIMITIVES = {
    'B': "byte", 'C': "char", 'D': "double", 'F': "float",
    'I': "int", 'J': "long", 'S': "short", 'Z': "boolean", 'V': "void",
}


def _parse_parameter_types(params: str) -> list[str]:
    types = []
    i = 0
    while i < len(params):
        dims = 0
        while params[i] == '[':
            dims += 1
            i += 1
        if params[i] == 'L':
            end = params.index(';', i)
            name = params[i + 1:end]
            name = name[name.rfind('/') + 1:].replace('$', '.')
            i = end + 1
        else:
            name = _PRIMITIVES.get(params[i], params[i])
            i += 1
        types.append(name + "[]" * dims)
    return types


def branch_title(branches: Counter) -> str:
    if branches.missed == 0:
        return f"All {branches.total} branches covered."
    if branches.covered == 0:
        return f"All {branches.total} branches missed."
    return f"{branches.missed} of {branches.total} branches missed."


@dataclass
class TableRow:
    """One row of a coverage table."""
    label: str
    node: CoverageNode
    link: Optional[str] = None
    style: str = "el_package"


@dataclass
class SourceLine:
    nr: int
    text: str
    style: Optional[str] = None
    title: Optional[str] = None


class HTMLReportWriter:
    """
    Writes the multi page HTML report into output_dir.

    Existing files with the same names are overwritten; nothing else in
    the directory is touched. Pages are written in output_encoding,
    independent of the encoding the sources are read with.
    """

    def __init__(self, output_dir: Path, output_encoding: str = "utf-8"):
        self.output_dir = Path(output_dir)
        self.output_encoding = output_encoding
        self.env = Environment(
            loader=PackageLoader("jacoco_report.report", "templates"),
            autoescape=select_autoescape(["html"]),
            trim_blocks=True,
            lstrip_blocks=True,
        )
        self.env.filters["percent"] = percent
        self.env.filters["bar_width"] = bar_width
        self.env.globals["version"] = __version__
        self.env.globals["sessions_page"] = SESSIONS_PAGE
        # Class id -> page path relative to output_dir, for the sessions page
        self.class_pages: dict[int, str] = {}
        self.files_written = 0

    # -- low level ---------------------------------------------------------

    def _write_file(self, relative: str, content: str) -> None:
        path = self.output_dir / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w', encoding=self.output_encoding) as f:
            f.write(content)
        self.files_written += 1

    def _render(self, relative: str, template: str, breadcrumb: list, **context) -> None:
        depth = relative.count('/')
        root = "../" * depth
        html = self.env.get_template(template).render(
            root=root,
            resources=f"{root}{RESOURCES_FOLDER}/",
            breadcrumb=breadcrumb,
            encoding=self.output_encoding,
            **context,
        )
        self._write_file(relative, html)

    def _table(self, rows: list[TableRow], total: CoverageNode) -> dict:
        maximum = max((r.node.instruction_counter.total for r in rows), default=0)
        branch_maximum = max((r.node.branch_counter.total for r in rows), default=0)
        return {
            "rows": rows,
            "total": total,
            "max_instructions": maximum,
            "max_branches": branch_maximum,
        }

    # -- pages -------------------------------------------------------------

    def write_resources(self) -> None:
        css = self.env.get_template("report.css").render()
        self._write_file(f"{RESOURCES_FOLDER}/report.css", css)

    def write_sessions(self, sessions: list[SessionInfo], execution_data: list[ExecutionData], group_name: str) -> None:
        classes = [
            {
                "name": data.name.replace('/', '.'),
                "id": f"{data.id:016x}",
                "link": self.class_pages.get(data.id),
            }
            for data in execution_data
        ]
        self._render(
            SESSIONS_PAGE,
            "sessions.html",
            breadcrumb=[(group_name, "index.html"), ("Sessions", None)],
            title="Sessions",
            sessions=sessions,
            classes=classes,
        )

    def write_group(
        self,
        group: GroupCoverage,
        locators: list[MultiDirectorySourceFileLocator],
    ) -> None:
        rows = []
        for bundle, locator in zip(group.bundles, locators):
            self.write_bundle(bundle, locator, group.name)
            rows.append(TableRow(bundle.name, bundle, f"{bundle.name}/index.html", "el_bundle"))
        self._render(
            "index.html",
            "group.html",
            breadcrumb=[(group.name, None)],
            title=group.name,
            table=self._table(rows, group),
        )

    def write_bundle(
        self,
        bundle: BundleCoverage,
        locator: MultiDirectorySourceFileLocator,
        group_name: str,
    ) -> None:
        folder = bundle.name
        crumbs = [(group_name, "../index.html"), (bundle.name, None)]
        rows = []
        for package in bundle.packages:
            if not package.contains_code:
                continue
            name = package_folder(package.name)
            self.write_package(package, locator, f"{folder}/{name}", group_name, bundle.name)
            rows.append(TableRow(package_label(package.name), package, f"{name}/index.html"))
        no_match = [c.name.replace('/', '.') for c in bundle.classes if c.no_match]
        self._render(
            f"{folder}/index.html",
            "bundle.html",
            breadcrumb=crumbs,
            title=bundle.name,
            table=self._table(rows, bundle),
            no_match=sorted(no_match),
        )

    def write_package(
        self,
        package: PackageCoverage,
        locator: MultiDirectorySourceFileLocator,
        folder: str,
        group_name: str,
        bundle_name: str,
    ) -> None:
        label = package_label(package.name)
        crumbs = [
            (group_name, "../../index.html"),
            (bundle_name, "../index.html"),
            (label, None),
        ]

        source_pages: dict[str, str] = {}
        source_rows = []
        for source_file in package.source_files:
            page = self.write_source_file(source_file, locator, folder, crumbs[:-1] + [(label, "index.source.html")])
            if page is not None:
                source_pages[source_file.name] = page
            source_rows.append(TableRow(source_file.name, source_file, page, "el_source"))

        class_rows = []
        for class_coverage in package.classes:
            page = self.write_class(
                class_coverage, folder, crumbs[:-1] + [(label, "index.html")],
                source_pages.get(class_coverage.source_file_name),
            )
            class_rows.append(TableRow(class_coverage.simple_name.replace('$', '.'), class_coverage, page, "el_class"))

        self._render(
            f"{folder}/index.html",
            "package.html",
            breadcrumb=crumbs,
            title=label,
            table=self._table(class_rows, package),
            alternate=("Source Files", "index.source.html") if package.source_files else None,
        )
        self._render(
            f"{folder}/index.source.html",
            "package.html",
            breadcrumb=crumbs,
            title=label,
            table=self._table(source_rows, package),
            alternate=("Classes", "index.html"),
        )

    def write_class(
        self,
        class_coverage: ClassCoverage,
        folder: str,
        crumbs: list,
        source_page: Optional[str],
    ) -> str:
        page = f"{class_coverage.simple_name}.html"
        self.class_pages[class_coverage.id] = f"{folder}/{page}"
        rows = []
        for method in sorted(class_coverage.methods, key=lambda m: (m.name, m.desc)):
            link = None
            if source_page is not None and method.first_line != UNKNOWN_LINE:
                link = f"{source_page}#L{method.first_line}"
            rows.append(TableRow(
                method_label(method.name, method.desc, class_coverage.name), method, link, "el_method",
            ))
        title = class_coverage.simple_name.replace('$', '.')
        self._render(
            f"{folder}/{page}",
            "class.html",
            breadcrumb=crumbs + [(title, None)],
            title=title,
            table=self._table(rows, class_coverage),
            no_match=class_coverage.no_match,
            source_page=source_page,
        )
        return page

    def write_source_file(
        self,
        source_file: SourceFileCoverage,
        locator: MultiDirectorySourceFileLocator,
        folder: str,
        crumbs: list,
    ) -> Optional[str]:
        """Render the annotated source, None if the locator cannot find it."""
        text_lines = locator.read_source_lines(source_file.package_name, source_file.name)
        if text_lines is None:
            return None
        page = f"{source_file.name}.html"
        lines = [
            _source_line(nr, text, source_file.get_line(nr))
            for nr, text in enumerate(text_lines, start=1)
        ]
        self._render(
            f"{folder}/{page}",
            "source.html",
            breadcrumb=crumbs + [(source_file.name, None)],
            title=source_file.name,
            lines=lines,
            node=source_file,
        )
        return page


def _source_line(nr: int, text: str, line: Line) -> SourceLine:
    status = line.status
    if status not in _LINE_STYLES:
        return SourceLine(nr, text)
    style = _LINE_STYLES[status]
    title = None
    if line.branches.total > 0:
        style = f"{style} {_BRANCH_STYLES[line.branches.status]}"
        title = branch_title(line.branches)
    return SourceLine(nr, text, style, title)
