"""Idempotent provisioning of SSH user keys on remote hosts."""

from .errors import (
    ConfigurationError,
    RemoteExecutionError,
    SSHKeyError,
    StateStoreError,
    TransferError,
)
from .operations import (
    AuthorizeKey,
    AuthorizeKeyForLocalhost,
    AuthorizeRecordedKeys,
    GenerateKey,
    InstallKey,
    KeyPair,
    RecordPublicKey,
    from_restriction,
)
from .paths import default_key_filename, user_ssh_dir
from .report import Reporter
from .session import Session, apply
from .state import MemoryStore, ParameterStore, YamlFileStore

__all__ = [
    "AuthorizeKey",
    "AuthorizeKeyForLocalhost",
    "AuthorizeRecordedKeys",
    "ConfigurationError",
    "GenerateKey",
    "InstallKey",
    "KeyPair",
    "MemoryStore",
    "ParameterStore",
    "RecordPublicKey",
    "RemoteExecutionError",
    "Reporter",
    "SSHKeyError",
    "Session",
    "StateStoreError",
    "TransferError",
    "YamlFileStore",
    "apply",
    "default_key_filename",
    "from_restriction",
    "user_ssh_dir",
]
