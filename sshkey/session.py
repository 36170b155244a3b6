"""
sshkey - session

A `Session` accumulates provisioning operations for one target host; `apply`
runs them in order over a transport. Each step must succeed before the next
starts, and the first failure stops the remaining work for that host.
"""

from __future__ import annotations

from typing import Any, List, Optional

from .command import Script
from .errors import RemoteExecutionError, SSHKeyError
from .operations import (
    AuthorizeKey,
    AuthorizeKeyForLocalhost,
    AuthorizeRecordedKeys,
    GenerateKey,
    InstallKey,
    RecordPublicKey,
)
from .paths import DEFAULT_HOME_BASE
from .report import Reporter
from .state import ParameterStore


class Session:
    def __init__(self, target: str, *, home_base: str = DEFAULT_HOME_BASE) -> None:
        self.target = target
        self.home_base = home_base
        self.operations: List[Any] = []

    def add(self, op: Any) -> "Session":
        # plan() raises ConfigurationError for bad parameters
        op.plan(self.home_base)
        self.operations.append(op)
        return self

    def authorize_key(
        self,
        user: str,
        public_key: str,
        *,
        authorize_for_user: Optional[str] = None,
        restriction: Optional[str] = None,
    ) -> "Session":
        return self.add(
            AuthorizeKey(
                user,
                public_key,
                authorize_for_user=authorize_for_user,
                restriction=restriction,
            )
        )

    def authorize_key_for_localhost(
        self,
        user: str,
        public_key_filename: str,
        *,
        authorize_for_user: Optional[str] = None,
    ) -> "Session":
        return self.add(
            AuthorizeKeyForLocalhost(
                user, public_key_filename, authorize_for_user=authorize_for_user
            )
        )

    def authorize_recorded_keys(
        self,
        user: str,
        parameter_path: str,
        *,
        authorize_for_user: Optional[str] = None,
        restriction: Optional[str] = None,
    ) -> "Session":
        return self.add(
            AuthorizeRecordedKeys(
                user,
                parameter_path,
                authorize_for_user=authorize_for_user,
                restriction=restriction,
            )
        )

    def install_key(
        self, user: str, key_name: str, private_key: str, public_key: str
    ) -> "Session":
        return self.add(InstallKey(user, key_name, private_key, public_key))

    def generate_key(
        self,
        user: str,
        *,
        key_type: str = "rsa",
        file: Optional[str] = None,
        passphrase: str = "",
        no_dir: bool = False,
        comment: Optional[str] = None,
    ) -> "Session":
        return self.add(
            GenerateKey(
                user,
                key_type=key_type,
                file=file,
                passphrase=passphrase,
                no_dir=no_dir,
                comment=comment,
            )
        )

    def record_public_key(
        self,
        user: str,
        *,
        filename: Optional[str] = None,
        key_type: str = "rsa",
        parameter_path: Optional[str] = None,
    ) -> "Session":
        return self.add(
            RecordPublicKey(
                user, filename=filename, key_type=key_type, parameter_path=parameter_path
            )
        )


# -------------------------
# Runner
# -------------------------


def run_steps(transport: Any, target: str, op: Any, steps: List[Script]) -> None:
    for s in steps:
        rc, out, err = transport.execute(target, s)
        if rc != 0:
            raise RemoteExecutionError(target, s.name, rc, err or out, op.name)


def apply_operation(
    session: Session, op: Any, transport: Any, store: ParameterStore, rep: Reporter
) -> None:
    target = session.target

    if isinstance(op, AuthorizeRecordedKeys):
        expanded = op.expand(store)
        if not expanded:
            rep.warn(target, op.name, f"nothing recorded at {op.parameter_path}")
            return
        for sub in expanded:
            run_steps(transport, target, sub, sub.plan(session.home_base))
        rep.info(target, op.name, f"{op.describe()} ({len(expanded)} key(s))")
        return

    run_steps(transport, target, op, op.plan(session.home_base))

    if isinstance(op, RecordPublicKey):
        path = op.public_key_path(session.home_base)
        content = transport.read_file(target, path)
        if op.publish(target, content, store) is None:
            rep.info(target, op.name, f"{path} is blank; nothing recorded")
            return

    rep.info(target, op.name, op.describe())


def apply(
    session: Session, transport: Any, store: ParameterStore, rep: Reporter
) -> Session:
    """Run every queued operation; reports and re-raises the first failure."""
    for op in session.operations:
        try:
            apply_operation(session, op, transport, store, rep)
        except SSHKeyError as ex:
            rep.fail(session.target, op.name, str(ex))
            raise
    return session
