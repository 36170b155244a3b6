"""
sshkey - reconcile

Config-driven provisioning of SSH user keys across hosts.
Runs from a workstation, connects to targets over SSH, and converges
~user/.ssh material: generated or installed key pairs, authorized_keys
entries, and public keys recorded into shared state for other hosts.

Exit codes:
  0 = reconcile completed (may include warnings)
  2 = failures found (some targets could not be reconciled)
  3 = runtime/config error
"""

from __future__ import annotations

import argparse
import sys
import textwrap
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, Dict, List

from .config import (
    DEFAULT_STATE_FILE,
    build_session,
    cfg_get,
    host_target,
    load_yaml,
    normalize_hostname,
)
from .errors import ConfigurationError, SSHKeyError
from .remote import SSH, SSHTransport
from .report import Reporter
from .session import apply
from .state import ParameterStore, YamlFileStore


def eprint(*args: Any) -> None:
    print(*args, file=sys.stderr)


def check_reachable(ssh: SSH, target: str, rep: Reporter) -> bool:
    rc, out, err = ssh.run(target, "true", sudo=False, timeout=10)
    if rc != 0:
        rep.fail(target, "ssh", f"unreachable: rc={rc} {err or out}".strip())
        return False
    rep.info(target, "ssh", "reachable")
    return True


def reconcile_host(
    cfg: Dict[str, Any],
    host: Dict[str, Any],
    transport: SSHTransport,
    store: ParameterStore,
    rep: Reporter,
) -> bool:
    target = host_target(host)
    try:
        session = build_session(cfg, host)
    except ConfigurationError as ex:
        rep.fail(target, "config", str(ex))
        return False

    if not session.operations:
        rep.warn(target, "ssh-keys", "no ssh_keys configured for this host")
        return True

    if not check_reachable(transport.ssh, target, rep):
        return False

    try:
        apply(session, transport, store, rep)
    except SSHKeyError:
        # already reported against the failing operation
        return False
    return True


def select_hosts(
    cfg: Dict[str, Any], host_filter: str, rep: Reporter
) -> List[Dict[str, Any]]:
    hosts = cfg.get("hosts", []) or []
    if not isinstance(hosts, list):
        raise ConfigurationError("config.hosts must be a list")

    selected = []
    for host in hosts:
        if not isinstance(host, dict) or "hostname" not in host:
            rep.fail("config", "host-parse", f"Invalid host entry: {host!r}")
            continue
        hn = normalize_hostname(host.get("hostname", ""))
        fqdn = normalize_hostname(host.get("fqdn", "") or "")
        if host_filter and host_filter not in (hn, fqdn):
            continue
        selected.append(host)
    return selected


def main() -> int:
    ap = argparse.ArgumentParser(
        prog="sshkey-reconcile",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        description="Provision and reconcile SSH user keys across hosts.",
        epilog=textwrap.dedent("""\
        Examples:
          sshkey-reconcile --config config/hosts.yml
          sshkey-reconcile --config config/hosts.yml --host db01
          sshkey-reconcile --config config/hosts.yml --dry-run
          sshkey-reconcile --config config/hosts.yml --jobs 4 --state-file /srv/keys.yml
        """),
    )
    ap.add_argument("--config", required=True, help="Path to deployment config YAML")
    ap.add_argument("--host", help="Limit to a single host by short hostname or FQDN")
    ap.add_argument(
        "--dry-run",
        action="store_true",
        help="Do not change anything on targets",
    )
    ap.add_argument(
        "--limit",
        type=int,
        default=0,
        help="Limit number of targets processed (0 = no limit)",
    )
    ap.add_argument("--fail-fast", action="store_true", help="Stop on first failure")
    ap.add_argument(
        "--jobs",
        type=int,
        default=1,
        help="Hosts reconciled in parallel (1 = config order)",
    )
    ap.add_argument(
        "--state-file",
        default=None,
        help=f"Override global.state_file (default: {DEFAULT_STATE_FILE})",
    )
    args = ap.parse_args()

    rep = Reporter()
    try:
        cfg = load_yaml(args.config)
        hosts = select_hosts(
            cfg, normalize_hostname(args.host) if args.host else "", rep
        )
    except ConfigurationError as ex:
        eprint(f"ERROR: {ex}")
        return 3

    if args.jobs < 1:
        eprint("ERROR: --jobs must be >= 1")
        return 3
    if args.limit:
        hosts = hosts[: args.limit]

    store = YamlFileStore(
        args.state_file or cfg_get(cfg, "global.state_file", DEFAULT_STATE_FILE)
    )
    ssh = SSH(
        user=cfg_get(cfg, "reconciliation.ssh.default_user", "ops"),
        port=int(cfg_get(cfg, "reconciliation.ssh.port", 22)),
        timeout=int(cfg_get(cfg, "reconciliation.ssh.connect_timeout_seconds", 8)),
        proxy_jump=cfg_get(cfg, "reconciliation.ssh.proxy_jump", None),
        dry_run=args.dry_run,
    )
    transport = SSHTransport(ssh)

    if args.jobs == 1:
        for host in hosts:
            ok = reconcile_host(cfg, host, transport, store, rep)
            if args.fail_fast and not ok:
                rep.print()
                return 2
    else:
        with ThreadPoolExecutor(max_workers=args.jobs) as pool:
            futures = [
                pool.submit(reconcile_host, cfg, host, transport, store, rep)
                for host in hosts
            ]
            for fut in as_completed(futures):
                if args.fail_fast and not fut.result():
                    for other in futures:
                        other.cancel()
                    break

    rep.print()
    i, w, f = rep.summarize()
    print(f"\nSummary: INFO={i} WARN={w} FAIL={f}")
    return 2 if f > 0 else 0


if __name__ == "__main__":
    sys.exit(main())
