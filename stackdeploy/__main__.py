"""Entry point for `python -m stackdeploy`.

Usage:
    python -m stackdeploy deploy
    uv run python -m stackdeploy destroy
"""

from __future__ import annotations

from stackdeploy.cli import cli

cli()
