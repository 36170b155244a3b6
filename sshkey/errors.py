"""
sshkey - errors

Every failure surfaced by the provisioning core derives from SSHKeyError so
callers can stop a host on any of them while leaving other hosts alone.
"""

from __future__ import annotations

from typing import Optional


class SSHKeyError(RuntimeError):
    pass


class ConfigurationError(SSHKeyError):
    """Insufficient or contradictory parameters; raised before any remote call."""


class RemoteExecutionError(SSHKeyError):
    def __init__(
        self, target: str, step: str, rc: int, output: str = "", operation: str = ""
    ) -> None:
        self.target = target
        self.step = step
        self.rc = rc
        self.output = output
        self.operation = operation
        where = f"{operation}/{step}" if operation else step
        super().__init__(f"{target}: {where} failed: rc={rc} {output}".strip())


class TransferError(SSHKeyError):
    def __init__(self, target: str, path: str, details: Optional[str] = None) -> None:
        self.target = target
        self.path = path
        super().__init__(f"{target}: unable to read {path}: {details or 'no output'}")


class StateStoreError(SSHKeyError):
    pass
