"""
JaCoCo Report - HTML coverage reports from JaCoCo execution data.

Loads one or more JaCoCo ``.exec`` files, analyzes the compiled classes of
one or more projects against them and renders a single navigable HTML
report grouping all projects.
"""

__version__ = "0.1.0"
