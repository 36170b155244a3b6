"""
sshkey - report

Findings collected while reconciling, printed per target at the end of a run.
"""

from __future__ import annotations

import dataclasses
import threading
from typing import Dict, List, Tuple


@dataclasses.dataclass
class Finding:
    target: str
    severity: str  # "INFO" | "WARN" | "FAIL"
    action: str
    details: str


class Reporter:
    def __init__(self) -> None:
        self.items: List[Finding] = []
        self._lock = threading.Lock()

    def _add(self, finding: Finding) -> None:
        with self._lock:
            self.items.append(finding)

    def info(self, target: str, action: str, details: str) -> None:
        self._add(Finding(target, "INFO", action, details))

    def warn(self, target: str, action: str, details: str) -> None:
        self._add(Finding(target, "WARN", action, details))

    def fail(self, target: str, action: str, details: str) -> None:
        self._add(Finding(target, "FAIL", action, details))

    def failed(self, target: str) -> bool:
        with self._lock:
            return any(x.target == target and x.severity == "FAIL" for x in self.items)

    def summarize(self) -> Tuple[int, int, int]:
        with self._lock:
            i = sum(1 for x in self.items if x.severity == "INFO")
            w = sum(1 for x in self.items if x.severity == "WARN")
            f = sum(1 for x in self.items if x.severity == "FAIL")
        return i, w, f

    def print(self) -> None:
        by_target: Dict[str, List[Finding]] = {}
        with self._lock:
            for x in self.items:
                by_target.setdefault(x.target, []).append(x)

        sev_order = {"FAIL": 0, "WARN": 1, "INFO": 2}
        for tgt in sorted(by_target.keys()):
            print(f"\n== {tgt} ==")
            for it in sorted(
                by_target[tgt], key=lambda z: (sev_order.get(z.severity, 9), z.action)
            ):
                prefix = {"INFO": "[..] ", "WARN": "[!!] ", "FAIL": "[XX] "}.get(
                    it.severity, "[?] "
                )
                print(f"{prefix}{it.action}: {it.details}")
