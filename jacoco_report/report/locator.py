"""
Source lookup for the HTML report.

Classes only record their source file name and package. The locator
probes a fixed, ordered list of root directories for "<package>/<file>"
and hands back the first match.
"""

import io
from pathlib import Path
from typing import BinaryIO, Optional, TextIO


class MultiDirectorySourceFileLocator:
    """
    Finds source files below several root directories, first match wins.

    Usage:
        locator = MultiDirectorySourceFileLocator([Path("proj/src"), Path("proj/src_gen")])
        reader = locator.get_source_file("org/example", "Foo.java")
        if reader is not None:
            with reader:
                text = reader.read()
    """

    def __init__(self, directories: list[Path], encoding: str = "utf-8", tab_width: int = 4):
        self.directories = [Path(d) for d in directories]
        self.encoding = encoding
        self.tab_width = tab_width

    @classmethod
    def for_project(
        cls,
        project_dir: Path,
        subdirs: tuple[str, ...] = ("src", "src_gen"),
        encoding: str = "utf-8",
        tab_width: int = 4,
    ) -> "MultiDirectorySourceFileLocator":
        """Locator probing the given subdirectories of a project, in order."""
        return cls([Path(project_dir) / s for s in subdirs], encoding, tab_width)

    def find(self, path: str) -> Optional[Path]:
        for directory in self.directories:
            candidate = directory / path
            if candidate.is_file():
                return candidate
        return None

    def get_source_stream(self, path: str) -> Optional[BinaryIO]:
        """Open the first file matching path, None if no root has it."""
        found = self.find(path)
        if found is None:
            return None
        return open(found, 'rb')

    def get_source_file(self, package_name: str, file_name: str) -> Optional[TextIO]:
        """Open the source of a class in package_name (VM notation) as text."""
        path = f"{package_name}/{file_name}" if package_name else file_name
        stream = self.get_source_stream(path)
        if stream is None:
            return None
        return io.TextIOWrapper(stream, encoding=self.encoding, errors='replace')

    def read_source_lines(self, package_name: str, file_name: str) -> Optional[list[str]]:
        """Source lines with tabs expanded, None if the file was not found."""
        reader = self.get_source_file(package_name, file_name)
        if reader is None:
            return None
        with reader:
            text = reader.read()
        # Only CR, LF and CRLF end a line; newline translation leaves "\n"
        lines = text.split("\n")
        if lines[-1] == "":
            lines.pop()
        return [line.expandtabs(self.tab_width) for line in lines]
