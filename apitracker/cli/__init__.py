"""apitracker command-line interface.

Exposes:
    cli -- Click group entry point (registered as ``apitracker`` script).
"""

from apitracker.cli.main import cli

__all__ = ["cli"]
