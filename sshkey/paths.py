"""
sshkey - paths

Canonical locations of a user's SSH material on a target host.
"""

from __future__ import annotations

import posixpath
from typing import Dict, Optional

from .errors import ConfigurationError

DEFAULT_HOME_BASE = "/home"

SSH_DEFAULT_FILENAMES: Dict[str, str] = {
    "rsa1": "identity",
    "rsa": "id_rsa",
    "dsa": "id_dsa",
}

AUTHORIZED_KEYS = "authorized_keys"


def user_home(user: str, home_base: str = DEFAULT_HOME_BASE) -> str:
    if user == "root":
        return "/root"
    return posixpath.join(home_base, user)


def user_ssh_dir(user: str, home_base: str = DEFAULT_HOME_BASE) -> str:
    if not user or "/" in user:
        raise ConfigurationError(f"Invalid user name: {user!r}")
    return posixpath.join(user_home(user, home_base), ".ssh") + "/"


def default_key_filename(key_type: str) -> str:
    name = SSH_DEFAULT_FILENAMES.get(key_type)
    if name is None:
        raise ConfigurationError(
            f"No default key file for type {key_type!r}; pass an explicit file name"
        )
    return name


def key_filename(key_type: str, filename: Optional[str] = None) -> str:
    return filename or default_key_filename(key_type)


def authorized_keys_path(user: str, home_base: str = DEFAULT_HOME_BASE) -> str:
    return user_ssh_dir(user, home_base) + AUTHORIZED_KEYS
