"""kubectl command-line client bound to one cluster context.

Tests use this for the things that are awkward through the API client:
applying raw YAML, reading logs, or reproducing what an operator would type.
"""

from __future__ import annotations

import subprocess
from dataclasses import dataclass, replace
from pathlib import Path

from kubetestkit.errors import KubeCmdError
from kubetestkit.observability.logging import get_logger

_DEFAULT_TIMEOUT_S: float = 120.0


@dataclass(frozen=True)
class ExecResult:
    """Outcome of one kubectl invocation."""

    command: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


@dataclass(frozen=True)
class KubeCmdClient:
    """Thin kubectl wrapper.

    Instances are immutable; :meth:`in_namespace` returns a copy scoped to a
    namespace so a test can hold one client per namespace.
    """

    context: str = ""
    namespace: str | None = None
    binary: str = "kubectl"
    timeout: float = _DEFAULT_TIMEOUT_S

    @property
    def context_name(self) -> str:
        return self.context

    def in_namespace(self, namespace: str) -> KubeCmdClient:
        return replace(self, namespace=namespace)

    def command(self, *args: str) -> list[str]:
        """Full argv for ``kubectl <args>`` with context and namespace flags."""
        cmd = [self.binary]
        if self.context:
            cmd.append(f"--context={self.context}")
        if self.namespace:
            cmd.append(f"--namespace={self.namespace}")
        cmd.extend(args)
        return cmd

    def exec(self, *args: str, raise_on_error: bool = True, stdin: str | None = None) -> ExecResult:
        """Run kubectl and capture its output.

        Raises:
            KubeCmdError: on non-zero exit when ``raise_on_error`` is True.
        """
        cmd = self.command(*args)
        log = get_logger("kube_cmd_client", context=self.context or "current")
        log.debug("kubectl_exec", command=" ".join(cmd))
        completed = subprocess.run(
            cmd,
            input=stdin,
            capture_output=True,
            text=True,
            timeout=self.timeout,
            check=False,
        )
        result = ExecResult(
            command=tuple(cmd),
            returncode=completed.returncode,
            stdout=completed.stdout,
            stderr=completed.stderr,
        )
        if not result.ok:
            log.debug("kubectl_failed", command=" ".join(cmd), returncode=result.returncode)
            if raise_on_error:
                raise KubeCmdError(cmd, result.returncode, result.stderr)
        return result

    # ------------------------------------------------------------------
    # Convenience verbs
    # ------------------------------------------------------------------

    def get(self, kind: str, name: str | None = None, output: str = "yaml") -> str:
        args = ["get", kind] if name is None else ["get", kind, name]
        return self.exec(*args, "-o", output).stdout

    def apply(self, manifest: str | Path) -> ExecResult:
        """Apply a manifest file path or an inline YAML document."""
        if isinstance(manifest, Path):
            return self.exec("apply", "-f", str(manifest))
        return self.exec("apply", "-f", "-", stdin=manifest)

    def create(self, manifest: str | Path) -> ExecResult:
        if isinstance(manifest, Path):
            return self.exec("create", "-f", str(manifest))
        return self.exec("create", "-f", "-", stdin=manifest)

    def delete(self, kind: str, name: str, wait: bool = True) -> ExecResult:
        return self.exec("delete", kind, name, "--ignore-not-found", f"--wait={str(wait).lower()}")

    def logs(self, pod: str, container: str | None = None, previous: bool = False) -> str:
        args = ["logs", pod]
        if container:
            args.extend(["-c", container])
        if previous:
            args.append("--previous")
        return self.exec(*args).stdout
