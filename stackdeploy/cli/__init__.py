"""stackdeploy command-line interface.

Exposes:
    cli -- Click group entry point (registered as ``stackdeploy`` script).
"""

from stackdeploy.cli.main import cli

__all__ = ["cli"]
