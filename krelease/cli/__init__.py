"""krelease command-line interface.

Exposes:
    cli -- Click group entry point (registered as ``krelease`` script).
"""

from krelease.cli.main import cli

__all__ = ["cli"]
