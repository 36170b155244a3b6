"""
sshkey - command

A small typed model of the remote shell work done for a provisioning step.
Operations build `Script`s out of the nodes below; a transport either renders
them to bash with `render()` or interprets them directly. Quoting lives only
in the renderer.
"""

from __future__ import annotations

import base64
import dataclasses
import re
import shlex
from typing import List, Tuple, Union

KEY_TYPE_RE = re.compile(r"^(ssh-|ecdsa-|sk-)")

# awk twin of key_material(), applied to the first non-blank line
KEY_MATERIAL_AWK = (
    "NF { for (i = 1; i < NF; i++) if ($i ~ /^(ssh-|ecdsa-|sk-)/) "
    '{ print $i " " $(i + 1); exit } $1 = $1; print; exit }'
)


# -------------------------
# Values
# -------------------------


@dataclasses.dataclass(frozen=True)
class Var:
    name: str


Value = Union[str, Var]


# -------------------------
# Tests
# -------------------------


@dataclasses.dataclass(frozen=True)
class FileExists:
    path: Value


@dataclasses.dataclass(frozen=True)
class FileContains:
    """True when `fragment` occurs literally in the file; a missing file is absent."""

    path: Value
    fragment: Value


@dataclasses.dataclass(frozen=True)
class Blank:
    """True when the value is empty or whitespace only."""

    value: Value


@dataclasses.dataclass(frozen=True)
class Not:
    test: "Test"


Test = Union[FileExists, FileContains, Blank, Not]


# -------------------------
# Actions
# -------------------------


@dataclasses.dataclass(frozen=True)
class Assign:
    name: str
    value: Value


@dataclasses.dataclass(frozen=True)
class AssignFileContent:
    name: str
    path: Value


@dataclasses.dataclass(frozen=True)
class AssignKeyMaterial:
    """Bind `name` to the "<type> <base64>" fields of the first key line in `value`."""

    name: str
    value: Value


@dataclasses.dataclass(frozen=True)
class Fail:
    message: str
    rc: int = 1


@dataclasses.dataclass(frozen=True)
class EnsureDirectory:
    path: Value
    owner: str
    mode: str


@dataclasses.dataclass(frozen=True)
class EnsureFile:
    path: Value
    owner: str
    mode: str


@dataclasses.dataclass(frozen=True)
class WriteFile:
    path: Value
    content: str
    owner: str
    mode: str


@dataclasses.dataclass(frozen=True)
class AppendLine:
    path: Value
    line: Value
    prefix: str = ""


@dataclasses.dataclass(frozen=True)
class GenerateKeyPair:
    path: Value
    key_type: str
    passphrase: str
    comment: str


@dataclasses.dataclass(frozen=True)
class If:
    test: Test
    then: Tuple["Action", ...]


Action = Union[
    Assign,
    AssignFileContent,
    AssignKeyMaterial,
    Fail,
    EnsureDirectory,
    EnsureFile,
    WriteFile,
    AppendLine,
    GenerateKeyPair,
    If,
]


@dataclasses.dataclass(frozen=True)
class Script:
    name: str
    actions: Tuple[Action, ...]


def script(name: str, *actions: Action) -> Script:
    return Script(name, tuple(actions))


# -------------------------
# Predicate builders
# -------------------------


def key_material(public_key: str) -> str:
    """The "<type> <base64>" part of a key line, ignoring options and comment.

    Lines without a recognizable key type (e.g. rsa1) are returned with their
    whitespace normalized.
    """
    for line in public_key.splitlines():
        tokens = line.split()
        if not tokens:
            continue
        for i in range(len(tokens) - 1):
            if KEY_TYPE_RE.match(tokens[i]):
                return f"{tokens[i]} {tokens[i + 1]}"
        return " ".join(tokens)
    return ""


def key_present(path: Value, fragment: Value) -> FileContains:
    if isinstance(fragment, str):
        fragment = fragment.strip()
    return FileContains(path, fragment)


def key_absent(path: Value, fragment: Value) -> Not:
    return Not(key_present(path, fragment))


# -------------------------
# Rendering
# -------------------------


def shell_escape(s: str) -> str:
    return shlex.quote(s)


def render_value(v: Value) -> str:
    if isinstance(v, Var):
        return f'"${{{v.name}}}"'
    return shell_escape(v)


def render_test(t: Test) -> str:
    if isinstance(t, FileExists):
        return f"[[ -e {render_value(t.path)} ]]"
    if isinstance(t, FileContains):
        return (
            f"grep -qF -- {render_value(t.fragment)} {render_value(t.path)} 2>/dev/null"
        )
    if isinstance(t, Blank):
        return f"[[ -z \"$(printf '%s' {render_value(t.value)} | tr -d '[:space:]')\" ]]"
    if isinstance(t, Not):
        return f"! {render_test(t.test)}"
    raise TypeError(f"unsupported test node: {t!r}")


def render_action(a: Action, indent: str = "") -> List[str]:
    if isinstance(a, Assign):
        return [f"{indent}{a.name}={render_value(a.value)}"]
    if isinstance(a, AssignFileContent):
        return [f'{indent}{a.name}="$(cat {render_value(a.path)})"']
    if isinstance(a, AssignKeyMaterial):
        return [
            f"{indent}{a.name}=\"$(printf '%s\\n' {render_value(a.value)}"
            f" | awk {shell_escape(KEY_MATERIAL_AWK)})\""
        ]
    if isinstance(a, Fail):
        return [
            f"{indent}echo {shell_escape(a.message)} >&2",
            f"{indent}exit {int(a.rc)}",
        ]
    if isinstance(a, EnsureDirectory):
        return [
            f"{indent}install -d -m {shell_escape(a.mode)} -o {shell_escape(a.owner)} "
            f"{render_value(a.path)}"
        ]
    if isinstance(a, EnsureFile):
        p = render_value(a.path)
        mode = shell_escape(a.mode)
        owner = shell_escape(a.owner)
        return [
            f"{indent}if [[ ! -e {p} ]]; then",
            f"{indent}  install -m {mode} -o {owner} /dev/null {p}",
            f"{indent}fi",
            f"{indent}chown {owner} {p}",
            f"{indent}chmod {mode} {p}",
        ]
    if isinstance(a, WriteFile):
        # base64 avoids here-doc quoting issues with arbitrary key material
        b64 = base64.b64encode(a.content.encode("utf-8")).decode("ascii")
        return [
            f'{indent}tmp="$(mktemp)"',
            f'{indent}echo {shell_escape(b64)} | base64 -d > "$tmp"',
            f"{indent}install -m {shell_escape(a.mode)} -o {shell_escape(a.owner)} "
            f'"$tmp" {render_value(a.path)}',
            f'{indent}rm -f "$tmp"',
        ]
    if isinstance(a, AppendLine):
        p = render_value(a.path)
        # keep an unterminated last line from swallowing the new entry
        return [
            f'{indent}if [[ -s {p} && -n "$(tail -c 1 {p})" ]]; then echo >> {p}; fi',
            f"{indent}printf '%s%s\\n' {shell_escape(a.prefix)} {render_value(a.line)}"
            f" >> {p}",
        ]
    if isinstance(a, GenerateKeyPair):
        return [
            f"{indent}ssh-keygen -q"
            f" -f {render_value(a.path)}"
            f" -t {shell_escape(a.key_type)}"
            f" -N {shell_escape(a.passphrase)}"
            f" -C {shell_escape(a.comment)}"
        ]
    if isinstance(a, If):
        lines = [f"{indent}if {render_test(a.test)}; then"]
        for inner in a.then:
            lines += render_action(inner, indent + "  ")
        lines.append(f"{indent}fi")
        return lines
    raise TypeError(f"unsupported action node: {a!r}")


def render(s: Script) -> str:
    lines = ["set -euo pipefail", f"# {s.name}"]
    for a in s.actions:
        lines += render_action(a)
    return "\n".join(lines) + "\n"
