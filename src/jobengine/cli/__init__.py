"""
CLI layer for jobengine.

Terminal transport only: argument parsing, live output and coloured
status lines. All behaviour lives in :mod:`jobengine.execution`.

Entry point::

    jobengine --help
"""

from jobengine.cli.app import app

__all__ = ["app"]
