"""
sshkey - remote

The ssh client wrapper and the transport that runs rendered scripts on a
target through it. A transport is any object offering

    execute(target, script) -> (rc, stdout, stderr)
    read_file(target, path) -> str

so tests can substitute an in-memory host.
"""

from __future__ import annotations

import dataclasses
import subprocess
from typing import List, Optional, Tuple

from .command import Script, render, shell_escape
from .errors import TransferError


def run(
    cmd: List[str], *, check: bool = False, capture: bool = True, timeout: int = 30
) -> subprocess.CompletedProcess:
    return subprocess.run(
        cmd,
        check=check,
        capture_output=capture,
        text=True,
        timeout=timeout,
    )


# -------------------------
# SSH runner
# -------------------------


@dataclasses.dataclass
class SSH:
    user: str
    port: int
    timeout: int
    proxy_jump: Optional[str]
    dry_run: bool

    def cmd_base(self) -> List[str]:
        cmd = [
            "ssh",
            "-p",
            str(self.port),
            "-o",
            "BatchMode=yes",
            "-o",
            "StrictHostKeyChecking=accept-new",
            "-o",
            f"ConnectTimeout={self.timeout}",
        ]
        if self.proxy_jump:
            cmd += ["-J", self.proxy_jump]
        return cmd

    def command(self, host: str, remote_cmd: str, *, sudo: bool = False) -> List[str]:
        if sudo:
            remote_cmd = f"sudo -n bash -lc {shell_escape(remote_cmd)}"
        else:
            remote_cmd = f"bash -lc {shell_escape(remote_cmd)}"
        return self.cmd_base() + [f"{self.user}@{host}", remote_cmd]

    def run(
        self, host: str, remote_cmd: str, *, sudo: bool = False, timeout: int = 60
    ) -> Tuple[int, str, str]:
        full = self.command(host, remote_cmd, sudo=sudo)
        if self.dry_run:
            return 0, "", ""

        try:
            cp = run(full, check=False, capture=True, timeout=timeout)
            return cp.returncode, (cp.stdout or "").strip(), (cp.stderr or "").strip()
        except subprocess.TimeoutExpired:
            return 124, "", "timeout"


# -------------------------
# Transport
# -------------------------


class SSHTransport:
    def __init__(self, ssh: SSH, *, sudo: bool = True, timeout: int = 120) -> None:
        self.ssh = ssh
        self.sudo = sudo
        self.timeout = timeout

    def execute(self, target: str, s: Script) -> Tuple[int, str, str]:
        return self.ssh.run(target, render(s), sudo=self.sudo, timeout=self.timeout)

    def read_file(self, target: str, path: str) -> str:
        rc, out, err = self.ssh.run(
            target, f"cat {shell_escape(path)}", sudo=self.sudo, timeout=self.timeout
        )
        if rc != 0:
            raise TransferError(target, path, f"rc={rc} {err or out}".strip())
        return out
