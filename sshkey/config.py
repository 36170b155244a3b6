"""
sshkey - config

Deployment YAML handling: dotted lookups and translation of a host's
`ssh_keys` block into a provisioning session.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any, Dict, List

import yaml

from .errors import ConfigurationError
from .operations import DEFAULT_KEY_TYPE, KeyPair, from_restriction
from .paths import DEFAULT_HOME_BASE
from .session import Session

DEFAULT_STATE_FILE = "state/ssh-keys.yml"

PUBKEY_RE = re.compile(
    r"^(.+\s)?(ssh-ed25519|ssh-rsa|ssh-dss|ecdsa-sha2-nistp(256|384|521)"
    r"|sk-ssh-ed25519@openssh\.com|sk-ecdsa-sha2-nistp256@openssh\.com)"
    r"\s+[A-Za-z0-9+/=]+(\s+.*)?$"
)


def load_yaml(path: str) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as ex:
        raise ConfigurationError(f"Unable to load config {path}: {ex}") from ex
    if not isinstance(data, dict):
        raise ConfigurationError("Config root must be a mapping/dict")
    return data


def cfg_get(cfg: Dict[str, Any], path: str, default: Any = None) -> Any:
    cur: Any = cfg
    for part in path.split("."):
        if not isinstance(cur, dict) or part not in cur:
            return default
        cur = cur[part]
    return cur


def require(cfg: Dict[str, Any], path: str) -> Any:
    v = cfg_get(cfg, path, None)
    if v is None:
        raise ConfigurationError(f"Missing required config key: {path}")
    return v


def normalize_hostname(s: str) -> str:
    return s.strip().lower()


def is_truthy(x: Any) -> bool:
    return bool(x) is True


def read_local_file(path: str) -> str:
    p = Path(path).expanduser()
    if not p.exists():
        raise ConfigurationError(f"Missing required local file: {p}")
    return p.read_text(encoding="utf-8")


def ensure_ssh_pubkey_looks_valid(pub: str, label: str) -> None:
    # minimal check: optional options, key type, base64 blob, optional comment
    if not PUBKEY_RE.match(pub.strip()):
        raise ConfigurationError(f"{label} does not look like an SSH public key line")


def ensure_private_key_looks_valid(key: str, label: str) -> None:
    if "PRIVATE KEY-----" not in key:
        raise ConfigurationError(f"{label} does not look like a PEM/OpenSSH private key")


def host_target(host: Dict[str, Any]) -> str:
    fqdn = normalize_hostname(host.get("fqdn") or "")
    return fqdn or normalize_hostname(host["hostname"])


# -------------------------
# ssh_keys block
# -------------------------


def _entries(block: Dict[str, Any], name: str) -> List[Dict[str, Any]]:
    items = block.get(name) or []
    if not isinstance(items, list):
        raise ConfigurationError(f"ssh_keys.{name} must be a list")
    for it in items:
        if not isinstance(it, dict):
            raise ConfigurationError(f"Invalid ssh_keys.{name} entry: {it!r}")
    return items


def _user(entry: Dict[str, Any], section: str) -> str:
    user = entry.get("user")
    if not user:
        raise ConfigurationError(f"ssh_keys.{section} entry without user: {entry!r}")
    return str(user)


def load_key_pair(entry: Dict[str, Any]) -> KeyPair:
    for k in ("private_key_file", "public_key_file"):
        if not entry.get(k):
            raise ConfigurationError(f"ssh_keys.install entry needs {k}: {entry!r}")
    private_key = read_local_file(entry["private_key_file"])
    public_key = read_local_file(entry["public_key_file"])
    ensure_private_key_looks_valid(private_key, entry["private_key_file"])
    ensure_ssh_pubkey_looks_valid(public_key, entry["public_key_file"])
    return KeyPair(private_key=private_key, public_key=public_key)


def build_session(cfg: Dict[str, Any], host: Dict[str, Any]) -> Session:
    target = host_target(host)
    session = Session(target, home_base=cfg_get(cfg, "global.home_base", DEFAULT_HOME_BASE))

    block = host.get("ssh_keys") or {}
    if not isinstance(block, dict):
        raise ConfigurationError(f"{target}: ssh_keys must be a mapping")

    for e in _entries(block, "generate"):
        session.generate_key(
            _user(e, "generate"),
            key_type=e.get("type", DEFAULT_KEY_TYPE),
            file=e.get("file"),
            passphrase=str(e.get("passphrase") or ""),
            no_dir=is_truthy(e.get("no_dir", False)),
            comment=e.get("comment"),
        )

    for e in _entries(block, "install"):
        pair = load_key_pair(e)
        name = e.get("name")
        if not name:
            raise ConfigurationError(f"ssh_keys.install entry without name: {e!r}")
        session.install_key(_user(e, "install"), name, pair.private_key, pair.public_key)

    for e in _entries(block, "record"):
        session.record_public_key(
            _user(e, "record"),
            filename=e.get("filename"),
            key_type=e.get("type", DEFAULT_KEY_TYPE),
            parameter_path=e.get("parameter_path"),
        )

    for e in _entries(block, "authorize_localhost"):
        filename = e.get("filename")
        if not filename:
            raise ConfigurationError(
                f"ssh_keys.authorize_localhost entry without filename: {e!r}"
            )
        session.authorize_key_for_localhost(
            _user(e, "authorize_localhost"),
            filename,
            authorize_for_user=e.get("authorize_for_user"),
        )

    for e in _entries(block, "authorize"):
        user = _user(e, "authorize")
        restriction = from_restriction(str(e["from"])) if e.get("from") else None
        if e.get("from_parameter"):
            session.authorize_recorded_keys(
                user,
                e["from_parameter"],
                authorize_for_user=e.get("authorize_for_user"),
                restriction=restriction,
            )
            continue
        if e.get("public_key"):
            key = str(e["public_key"])
            label = f"ssh_keys.authorize public_key for {user}"
        elif e.get("public_key_file"):
            key = read_local_file(e["public_key_file"])
            label = e["public_key_file"]
        else:
            raise ConfigurationError(
                "ssh_keys.authorize entry needs public_key, public_key_file "
                f"or from_parameter: {e!r}"
            )
        ensure_ssh_pubkey_looks_valid(key, label)
        session.authorize_key(
            user,
            key,
            authorize_for_user=e.get("authorize_for_user"),
            restriction=restriction,
        )

    return session
