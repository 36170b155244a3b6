"""
sshkey - operations

Provisioning operations as plain command objects. `plan()` validates the
parameters and returns the ordered remote steps; it never touches a host, so
a bad parameter fails before anything is applied. Operations with a local
stage (`RecordPublicKey.publish`, `AuthorizeRecordedKeys.expand`) receive
already-resolved values from the runner.
"""

from __future__ import annotations

import dataclasses
import posixpath
from typing import Any, ClassVar, List, Optional

from .command import (
    AppendLine,
    Assign,
    AssignFileContent,
    AssignKeyMaterial,
    Blank,
    EnsureDirectory,
    EnsureFile,
    Fail,
    FileExists,
    GenerateKeyPair,
    If,
    Not,
    Script,
    Var,
    WriteFile,
    key_absent,
    key_material,
    script,
)
from .errors import ConfigurationError
from .paths import AUTHORIZED_KEYS, key_filename, user_ssh_dir
from .state import ParameterStore, parse_path, union

DIR_MODE = "755"
PRIVATE_MODE = "600"
PUBLIC_MODE = "644"

DEFAULT_KEY_TYPE = "rsa"
DEFAULT_COMMENT = "generated by sshkey"
LOCALHOST_RESTRICTION = 'from="localhost"'


def from_restriction(host: str) -> str:
    """authorized_keys option limiting a key to connections from `host`."""
    if not host or '"' in host or any(c.isspace() for c in host):
        raise ConfigurationError(f"Invalid source restriction host: {host!r}")
    return f'from="{host}"'


def _single_line_key(public_key: str) -> str:
    key = (public_key or "").strip()
    if not key:
        raise ConfigurationError("public key is empty")
    if "\n" in key or "\r" in key:
        raise ConfigurationError("public key must be a single line")
    return key


def _relative_name(name: Optional[str], label: str) -> str:
    if not name or name.startswith("/") or ".." in name.split("/"):
        raise ConfigurationError(f"{label} must be a relative file name: {name!r}")
    return name


@dataclasses.dataclass(frozen=True)
class KeyPair:
    private_key: str
    public_key: str
    key_type: str = ""
    comment: str = ""


# -------------------------
# Authorization
# -------------------------


@dataclasses.dataclass
class AuthorizeKey:
    user: str
    public_key: str
    authorize_for_user: Optional[str] = None
    restriction: Optional[str] = None

    name: ClassVar[str] = "authorize-key"

    @property
    def target_user(self) -> str:
        return self.authorize_for_user or self.user

    def describe(self) -> str:
        return f"{self.user} key in ~{self.target_user}/.ssh/{AUTHORIZED_KEYS}"

    def plan(self, home_base: str) -> List[Script]:
        key = _single_line_key(self.public_key)
        target_user = self.target_user
        ssh_dir = user_ssh_dir(target_user, home_base)
        auth_file = ssh_dir + AUTHORIZED_KEYS
        prefix = f"{self.restriction} " if self.restriction else ""
        return [
            script("directory", EnsureDirectory(ssh_dir, target_user, DIR_MODE)),
            script("file", EnsureFile(auth_file, target_user, PUBLIC_MODE)),
            script(
                self.name,
                Assign("auth_file", auth_file),
                If(
                    key_absent(Var("auth_file"), key_material(key)),
                    (AppendLine(Var("auth_file"), key, prefix),),
                ),
            ),
        ]


@dataclasses.dataclass
class AuthorizeKeyForLocalhost:
    """Authorize a key file already on the target, for ssh access to localhost."""

    user: str
    public_key_filename: str
    authorize_for_user: Optional[str] = None

    name: ClassVar[str] = "authorize-key-for-localhost"

    @property
    def target_user(self) -> str:
        return self.authorize_for_user or self.user

    def describe(self) -> str:
        return (
            f"~{self.user}/.ssh/{self.public_key_filename} in "
            f"~{self.target_user}/.ssh/{AUTHORIZED_KEYS} (localhost only)"
        )

    def plan(self, home_base: str) -> List[Script]:
        filename = _relative_name(self.public_key_filename, "public key file")
        target_user = self.target_user
        key_file = user_ssh_dir(self.user, home_base) + filename
        ssh_dir = user_ssh_dir(target_user, home_base)
        auth_file = ssh_dir + AUTHORIZED_KEYS
        return [
            script("directory", EnsureDirectory(ssh_dir, target_user, DIR_MODE)),
            script("file", EnsureFile(auth_file, target_user, PUBLIC_MODE)),
            script(
                self.name,
                Assign("key_file", key_file),
                Assign("auth_file", auth_file),
                AssignFileContent("key_content", Var("key_file")),
                AssignKeyMaterial("key_material", Var("key_content")),
                If(
                    Blank(Var("key_material")),
                    (Fail(f"{key_file} holds no public key; nothing to authorize"),),
                ),
                If(
                    key_absent(Var("auth_file"), Var("key_material")),
                    (
                        AppendLine(
                            Var("auth_file"),
                            Var("key_content"),
                            LOCALHOST_RESTRICTION + " ",
                        ),
                    ),
                ),
            ),
        ]


@dataclasses.dataclass
class AuthorizeRecordedKeys:
    """Authorize every key published under `parameter_path` by other hosts."""

    user: str
    parameter_path: str
    authorize_for_user: Optional[str] = None
    restriction: Optional[str] = None

    name: ClassVar[str] = "authorize-recorded-keys"

    def describe(self) -> str:
        return f"keys recorded at {self.parameter_path} for {self.authorize_for_user or self.user}"

    def plan(self, home_base: str) -> List[Script]:
        parse_path(self.parameter_path)
        user_ssh_dir(self.authorize_for_user or self.user, home_base)
        return []

    def recorded_keys(self, store: ParameterStore) -> List[str]:
        keys: Any = store.get(self.parameter_path)
        if keys is None:
            return []
        if isinstance(keys, str):
            keys = [keys]
        return [k for k in keys if isinstance(k, str) and k.strip()]

    def expand(self, store: ParameterStore) -> List[AuthorizeKey]:
        return [
            AuthorizeKey(
                self.user,
                key,
                authorize_for_user=self.authorize_for_user,
                restriction=self.restriction,
            )
            for key in self.recorded_keys(store)
        ]


# -------------------------
# Key material
# -------------------------


@dataclasses.dataclass
class InstallKey:
    user: str
    key_name: str
    private_key: str
    public_key: str

    name: ClassVar[str] = "install-key"

    def describe(self) -> str:
        return f"~{self.user}/.ssh/{self.key_name} (+.pub)"

    def plan(self, home_base: str) -> List[Script]:
        key_name = _relative_name(self.key_name, "key name")
        if not self.private_key:
            raise ConfigurationError(f"{key_name}: private key content is empty")
        ssh_dir = user_ssh_dir(self.user, home_base)
        path = ssh_dir + key_name
        return [
            script("directory", EnsureDirectory(ssh_dir, self.user, DIR_MODE)),
            script(
                "private-key",
                WriteFile(path, self.private_key, self.user, PRIVATE_MODE),
            ),
            script(
                "public-key",
                WriteFile(path + ".pub", self.public_key, self.user, PUBLIC_MODE),
            ),
        ]


@dataclasses.dataclass
class GenerateKey:
    """Generate a key pair unless a file already exists at the target path.

    An existing key is never inspected or replaced, even when type or
    passphrase differ from what is requested now.
    """

    user: str
    key_type: str = DEFAULT_KEY_TYPE
    file: Optional[str] = None
    passphrase: str = ""
    no_dir: bool = False
    comment: Optional[str] = None

    name: ClassVar[str] = "ssh-keygen"

    def key_path(self, home_base: str) -> str:
        filename = _relative_name(key_filename(self.key_type, self.file), "key file")
        return user_ssh_dir(self.user, home_base) + filename

    def describe(self) -> str:
        return f"{self.key_type} key for {self.user}"

    def plan(self, home_base: str) -> List[Script]:
        path = self.key_path(home_base)
        steps: List[Script] = []
        if not self.no_dir:
            steps.append(
                script(
                    "directory",
                    EnsureDirectory(posixpath.dirname(path), self.user, DIR_MODE),
                )
            )
        steps.append(
            script(
                self.name,
                Assign("key_path", path),
                If(
                    Not(FileExists(Var("key_path"))),
                    (
                        GenerateKeyPair(
                            Var("key_path"),
                            self.key_type,
                            self.passphrase or "",
                            self.comment or DEFAULT_COMMENT,
                        ),
                    ),
                ),
            )
        )
        steps.append(
            script(
                "file",
                EnsureFile(path, self.user, PRIVATE_MODE),
                EnsureFile(path + ".pub", self.user, PUBLIC_MODE),
            )
        )
        return steps


# -------------------------
# Publication
# -------------------------


@dataclasses.dataclass
class RecordPublicKey:
    user: str
    filename: Optional[str] = None
    key_type: str = DEFAULT_KEY_TYPE
    parameter_path: Optional[str] = None

    name: ClassVar[str] = "record-public-key"

    def key_name(self) -> str:
        return _relative_name(key_filename(self.key_type, self.filename), "key file")

    def public_key_path(self, home_base: str) -> str:
        return user_ssh_dir(self.user, home_base) + self.key_name() + ".pub"

    def describe(self) -> str:
        where = self.parameter_path or f"host slot user.{self.user}.{self.key_name()}"
        return f"{self.key_name()}.pub of {self.user} -> {where}"

    def plan(self, home_base: str) -> List[Script]:
        self.public_key_path(home_base)
        if self.parameter_path is not None:
            parse_path(self.parameter_path)
        return []

    def slot(self, target: str) -> tuple:
        return ("host", target, "user", self.user, self.key_name())

    def publish(
        self, target: str, content: str, store: ParameterStore
    ) -> Optional[str]:
        """Record `content` in the store; returns None when there was nothing to record."""
        pub_key = (content or "").strip()
        if not pub_key:
            return None
        if self.parameter_path:
            store.update(self.parameter_path, lambda keys: union(keys, pub_key))
        else:
            store.set(self.slot(target), pub_key)
        return pub_key
