"""Thin async wrapper around the ``helm`` binary.

Values are passed as JSON on stdin (``-f -``); JSON is valid YAML, so no
temporary values files are written.
"""

from __future__ import annotations

import asyncio
import json
import re
from typing import Any

from stackdeploy.errors import StackDeployError
from stackdeploy.observability.logging import get_logger

_log = get_logger("cluster.helm")

_CHART_VERSION = re.compile(r"^(?P<name>.+?)-(?P<version>v?\d[\w.+-]*)$")


class HelmCommandError(StackDeployError):
    """Raised when a helm invocation exits non-zero."""

    def __init__(self, command: tuple[str, ...], returncode: int, stderr: str) -> None:
        super().__init__(f"helm {' '.join(command[:2])} exited {returncode}: {stderr.strip()[:500]}")
        self.command = command
        self.returncode = returncode
        self.stderr = stderr

    @property
    def not_found(self) -> bool:
        return "not found" in self.stderr.lower()


def split_chart(chart: str) -> tuple[str, str]:
    """Split helm's ``<name>-<version>`` chart column."""
    match = _CHART_VERSION.match(chart)
    if match is None:
        return chart, ""
    return match.group("name"), match.group("version")


class HelmClient:
    """Runs helm subcommands and decodes their JSON output."""

    def __init__(self, binary: str = "helm", kube_context: str | None = None) -> None:
        self._binary = binary
        self._kube_context = kube_context

    async def run(self, *args: str, stdin: str | None = None) -> str:
        cmd = list(args)
        if self._kube_context:
            cmd += ["--kube-context", self._kube_context]
        _log.debug("helm_exec", args=cmd[:3])
        process = await asyncio.create_subprocess_exec(
            self._binary,
            *cmd,
            stdin=asyncio.subprocess.PIPE if stdin is not None else None,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, stderr = await process.communicate(stdin.encode() if stdin is not None else None)
        if process.returncode != 0:
            raise HelmCommandError(args, process.returncode or -1, stderr.decode(errors="replace"))
        return stdout.decode()

    async def get_release(self, release: str, namespace: str) -> dict[str, Any] | None:
        """Return the ``helm list`` row for *release*, or None if it is not installed."""
        out = await self.run(
            "list", "--namespace", namespace, "--all", "--filter", f"^{re.escape(release)}$", "--output", "json"
        )
        rows = json.loads(out or "[]")
        for row in rows:
            if row.get("name") == release:
                return dict(row)
        return None

    async def get_values(self, release: str, namespace: str) -> dict[str, Any]:
        out = await self.run("get", "values", release, "--namespace", namespace, "--output", "json")
        return json.loads(out or "null") or {}

    async def repo_add(self, name: str, url: str) -> None:
        await self.run("repo", "add", name, url, "--force-update")

    async def upgrade_install(
        self,
        release: str,
        chart: str,
        namespace: str,
        values: dict[str, Any],
        version: str = "",
    ) -> None:
        args = ["upgrade", "--install", release, chart, "--namespace", namespace, "--values", "-"]
        if version:
            args += ["--version", version]
        await self.run(*args, stdin=json.dumps(values))

    async def uninstall(self, release: str, namespace: str) -> bool:
        """Uninstall *release*. Returns False if it was not installed."""
        try:
            await self.run("uninstall", release, "--namespace", namespace)
        except HelmCommandError as exc:
            if exc.not_found:
                return False
            raise
        return True
