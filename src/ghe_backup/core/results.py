# Author: PB & Claude
# Maintainer: PB
# Original date: 2025.07.04
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/ghe_backup/core/results.py

"""Outcomes of a run, aggregated for the end-of-run report."""

import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


class WarningCategory(str, Enum):
    TRANSFER = "transfer"
    VERIFY = "verify"
    FINALIZE = "finalize"
    SKIP = "skip"
    RESTORE = "restore"


@dataclass(frozen=True)
class RunWarning:
    category: WarningCategory
    message: str
    node: Optional[str] = None


@dataclass
class PhaseResult:
    """One transfer pass on one node."""
    node: str
    phase: str
    started: datetime
    finished: Optional[datetime] = None
    ok: bool = True
    error: Optional[str] = None

    @property
    def duration(self) -> float:
        if self.finished is None:
            return 0.0
        return (self.finished - self.started).total_seconds()


@dataclass
class NodeResult:
    """All passes for one node, in execution order."""
    node: str
    network_count: int = 0
    phases: list[PhaseResult] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(phase.ok for phase in self.phases)

    @property
    def failed_phase(self) -> Optional[PhaseResult]:
        return next((phase for phase in self.phases if not phase.ok), None)

    def phase(self, name: str) -> Optional[PhaseResult]:
        return next((phase for phase in self.phases if phase.phase == name), None)


@dataclass(frozen=True)
class GCReenableFailure:
    """GC stayed disabled on a node; needs manual remediation."""
    node: str
    sentinel: str
    error: str

    @property
    def remediation(self) -> str:
        return f"ssh to {self.node} and run: sudo rm -f {self.sentinel}"


class RunReport:
    """Thread-safe collector for everything the operator sees at run end."""

    def __init__(self, operation: str) -> None:
        self.operation = operation
        self.started = datetime.now()
        self.finished: Optional[datetime] = None
        self.snapshot: Optional[str] = None
        self.skipped = False
        self.network_count = 0
        self.nodes: dict[str, NodeResult] = {}
        self.warnings: list[RunWarning] = []
        self.gc_failures: list[GCReenableFailure] = []
        self._lock = threading.Lock()

    def warn(self, category: WarningCategory, message: str, node: Optional[str] = None) -> None:
        with self._lock:
            self.warnings.append(RunWarning(category, message, node))

    def skip(self, message: str) -> None:
        self.skipped = True
        self.warn(WarningCategory.SKIP, message)

    def add_node_result(self, result: NodeResult) -> None:
        """Record a node's passes; a later result for the same node is appended."""
        with self._lock:
            existing = self.nodes.get(result.node)
            if existing is None:
                self.nodes[result.node] = result
            else:
                existing.phases.extend(result.phases)
                existing.network_count = max(existing.network_count, result.network_count)
            failed = result.failed_phase
            if failed is not None:
                self.warnings.append(RunWarning(
                    WarningCategory.TRANSFER,
                    failed.error or f"{failed.phase} failed on {result.node}",
                    result.node,
                ))

    def add_gc_failure(self, failure: GCReenableFailure) -> None:
        with self._lock:
            self.gc_failures.append(failure)

    def finish(self) -> None:
        self.finished = datetime.now()

    def warnings_for(self, category: WarningCategory) -> list[RunWarning]:
        return [warning for warning in self.warnings if warning.category == category]

    def to_dict(self) -> dict:
        return {
            "operation": self.operation,
            "started": self.started.isoformat(),
            "finished": self.finished.isoformat() if self.finished else None,
            "snapshot": self.snapshot,
            "skipped": self.skipped,
            "network_count": self.network_count,
            "nodes": {
                name: {
                    "network_count": result.network_count,
                    "ok": result.ok,
                    "phases": [
                        {
                            "phase": phase.phase,
                            "ok": phase.ok,
                            "started": phase.started.isoformat(),
                            "finished": phase.finished.isoformat() if phase.finished else None,
                            "error": phase.error,
                        }
                        for phase in result.phases
                    ],
                }
                for name, result in sorted(self.nodes.items())
            },
            "warnings": [
                {"category": w.category.value, "node": w.node, "message": w.message}
                for w in self.warnings
            ],
            "gc_reenable_failures": [
                {"node": f.node, "error": f.error, "remediation": f.remediation}
                for f in self.gc_failures
            ],
        }
