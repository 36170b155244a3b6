"""Rendered scripts executed by a local bash against a scratch home directory."""

import os
import pwd
import shutil
import stat
import subprocess

import pytest

import sshkey.operations
from sshkey import MemoryStore, RemoteExecutionError, Reporter, Session, apply
from sshkey.command import Script, render

pytestmark = pytest.mark.skipif(
    shutil.which("bash") is None or shutil.which("install") is None,
    reason="needs bash and coreutils install",
)

USER = pwd.getpwuid(os.getuid()).pw_name
KEY = "ssh-ed25519 AAAAC3NzaC1lZDI1NTE5AAAAIBx9 alice@host"
OTHER = "ssh-rsa AAAAB3NzaC1yc2EAAAADAQABAAABAQD0 ops@bastion"


class LocalTransport:
    def __init__(self) -> None:
        self.scripts = []

    def execute(self, target: str, s: Script):
        self.scripts.append(s.name)
        p = subprocess.run(["bash", "-c", render(s)], capture_output=True, text=True)
        return p.returncode, p.stdout.strip(), p.stderr.strip()

    def read_file(self, target: str, path: str) -> str:
        with open(path, encoding="utf-8") as f:
            return f.read().strip()


@pytest.fixture
def home(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(
        sshkey.operations,
        "user_ssh_dir",
        lambda user, home_base="": f"{tmp_path}/{user}/.ssh/",
    )
    return tmp_path


def ssh_dir(home):
    return home / USER / ".ssh"


def run(build):
    transport = LocalTransport()
    apply(build(Session("localhost")), transport, MemoryStore(), Reporter())
    return transport


def mode(path):
    return stat.S_IMODE(os.stat(path).st_mode)


def test_authorize_twice_keeps_unmanaged_lines(home):
    d = ssh_dir(home)
    d.mkdir(parents=True)
    auth = d / "authorized_keys"
    existing = "# added by hand\n" + OTHER + "\n"
    auth.write_text(existing)

    for _ in range(2):
        run(lambda s: s.authorize_key(USER, KEY))

    assert auth.read_text() == existing + KEY + "\n"
    assert mode(auth) == 0o644
    assert mode(d) == 0o755


def test_authorize_after_unterminated_last_line(home):
    d = ssh_dir(home)
    d.mkdir(parents=True)
    auth = d / "authorized_keys"
    auth.write_text(OTHER)

    run(lambda s: s.authorize_key(USER, KEY, restriction='from="10.0.0.5"'))

    assert auth.read_text() == OTHER + "\n" + 'from="10.0.0.5" ' + KEY + "\n"


def test_authorize_other_comment_is_not_added_again(home):
    run(lambda s: s.authorize_key(USER, KEY))
    run(lambda s: s.authorize_key(USER, KEY.replace("alice@host", "alice@laptop")))
    assert (ssh_dir(home) / "authorized_keys").read_text() == KEY + "\n"


def test_authorize_keeps_shell_metacharacters_literal(home):
    key = "ssh-rsa AAAA$(touch pwned)`id` it's@host"
    run(lambda s: s.authorize_key(USER, key))
    assert (ssh_dir(home) / "authorized_keys").read_text() == key + "\n"
    assert not (home / "pwned").exists()


def test_authorize_for_localhost(home):
    d = ssh_dir(home)
    d.mkdir(parents=True)
    (d / "id_ed25519.pub").write_text(KEY + "\n")

    for _ in range(2):
        run(lambda s: s.authorize_key_for_localhost(USER, "id_ed25519.pub"))

    assert (d / "authorized_keys").read_text() == 'from="localhost" ' + KEY + "\n"


@pytest.mark.parametrize("content", ["", "\n  \n"])
def test_authorize_for_localhost_blank_key_file(home, content):
    d = ssh_dir(home)
    d.mkdir(parents=True)
    (d / "id_rsa.pub").write_text(content)

    with pytest.raises(RemoteExecutionError) as ei:
        run(lambda s: s.authorize_key_for_localhost(USER, "id_rsa.pub"))

    assert ei.value.step == "authorize-key-for-localhost"
    assert "holds no public key" in str(ei.value)
    assert (d / "authorized_keys").read_text() == ""


def test_generate_skips_existing_key_file(home):
    d = ssh_dir(home)
    d.mkdir(parents=True)
    (d / "id_rsa").write_text("existing private\n")
    (d / "id_rsa.pub").write_text(OTHER + "\n")
    os.chmod(d / "id_rsa", 0o644)
    os.chmod(d / "id_rsa.pub", 0o600)

    run(lambda s: s.generate_key(USER, key_type="rsa", comment="new"))

    assert (d / "id_rsa").read_text() == "existing private\n"
    assert (d / "id_rsa.pub").read_text() == OTHER + "\n"
    assert mode(d / "id_rsa") == 0o600
    assert mode(d / "id_rsa.pub") == 0o644


@pytest.mark.skipif(shutil.which("ssh-keygen") is None, reason="needs ssh-keygen")
def test_generate_creates_pair_once(home):
    d = ssh_dir(home)

    run(lambda s: s.generate_key(USER, key_type="ed25519", file="id_ed25519", comment="c"))
    private = (d / "id_ed25519").read_text()
    public = (d / "id_ed25519.pub").read_text()
    assert public.startswith("ssh-ed25519 ")
    assert mode(d / "id_ed25519") == 0o600
    assert mode(d / "id_ed25519.pub") == 0o644

    run(lambda s: s.generate_key(USER, key_type="ed25519", file="id_ed25519", comment="c"))
    assert (d / "id_ed25519").read_text() == private
    assert (d / "id_ed25519.pub").read_text() == public
