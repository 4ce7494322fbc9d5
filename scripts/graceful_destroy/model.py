from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

ENVIRONMENTS = ("dev", "staging", "production")

WARNING = "warning"
ERROR = "error"


@dataclass(frozen=True)
class Timeouts:
    # (ceiling, interval) pairs in seconds
    control_objects: int = 30
    control_interval: int = 5
    node_termination: int = 300
    node_interval: int = 15
    k8s_objects: int = 120
    k8s_interval: int = 10
    lb_deregister: int = 120
    lb_interval: int = 10
    pv_release: int = 60
    pv_interval: int = 10
    endpoint_eni_release: int = 120
    nat_delete: int = 120
    vpc_interval: int = 10
    target_group_in_use: int = 120
    target_group_interval: int = 15
    post_strip_settle: int = 3
    orphan_lb_settle: int = 15


@dataclass(frozen=True)
class Ctx:
    environment: str
    region: str
    dry_run: bool = False
    auto_approve: bool = False
    skip_stack_destroy: bool = False
    kubectl_available: bool = True
    account_id: str = ""
    caller_arn: str = ""
    expected_account_id: str = ""
    update_kubeconfig: bool = False
    stacks: Tuple[str, ...] = ()
    timeouts: Timeouts = field(default_factory=Timeouts)
    started_at: float = field(default_factory=time.time)

    @property
    def cluster_name(self) -> str:
        return f"{self.environment}-eks"

    @property
    def mode(self) -> str:
        return "dry-run" if self.dry_run else "apply"


@dataclass(frozen=True)
class ResourceRef:
    kind: str
    ident: str
    scope: str = ""
    discovery: str = "list"  # list|tag|pattern
    state: str = ""
    finalizers: Tuple[str, ...] = ()

    def __str__(self) -> str:
        if self.scope:
            return f"{self.kind} {self.scope}/{self.ident}"
        return f"{self.kind} {self.ident}"


@dataclass(frozen=True)
class ErrorRecord:
    phase: str
    message: str
    severity: str = ERROR
    resource: Optional[ResourceRef] = None


@dataclass(frozen=True)
class ActionRecord:
    desc: str
    mode: str  # dry-run|apply
    ok: bool
    rc: Optional[int] = None
    stderr: str = ""


@dataclass
class PhaseOutcome:
    name: str
    dry_run: bool = False
    skipped: bool = False
    records: List[ErrorRecord] = field(default_factory=list)
    duration: float = 0.0

    def info(self, msg: str) -> None:
        print(f"--- {msg}")

    def ok(self, msg: str) -> None:
        print(f"--- ok: {msg}")

    def warn(self, msg: str, resource: Optional[ResourceRef] = None) -> None:
        print(f"--- WARN: {msg}")
        self.records.append(
            ErrorRecord(phase=self.name, message=msg, severity=WARNING, resource=resource)
        )

    def error(self, msg: str, resource: Optional[ResourceRef] = None) -> None:
        # Nothing was mutated in dry-run, so nothing can have failed for real.
        severity = WARNING if self.dry_run else ERROR
        label = "WARN (dry-run)" if self.dry_run else "ERROR"
        print(f"--- {label}: {msg}")
        self.records.append(
            ErrorRecord(phase=self.name, message=msg, severity=severity, resource=resource)
        )

    def failed(self, msg: str, res, resource: Optional[ResourceRef] = None) -> None:
        """Record a failed call; throttling and eventual-consistency lag are only warnings."""
        detail = res.last_error_line() if res is not None else ""
        text = f"{msg}: {detail}" if detail else msg
        if res is not None and res.transient:
            self.warn(f"{text} (transient)", resource)
        else:
            self.error(text, resource)

    @property
    def errors(self) -> List[ErrorRecord]:
        return [r for r in self.records if r.severity == ERROR]

    @property
    def warnings(self) -> List[ErrorRecord]:
        return [r for r in self.records if r.severity == WARNING]

    @property
    def status(self) -> str:
        if self.skipped:
            return "skipped"
        return "failed" if self.errors else "ok"


@dataclass
class Summary:
    started_at: float = field(default_factory=time.time)
    finished_at: Optional[float] = None
    outcomes: List[PhaseOutcome] = field(default_factory=list)
    actions: List[ActionRecord] = field(default_factory=list)
    _records: List[ErrorRecord] = field(default_factory=list)

    def add_action(self, rec: ActionRecord) -> None:
        self.actions.append(rec)

    def add_outcome(self, outcome: PhaseOutcome) -> None:
        self.outcomes.append(outcome)
        self._records.extend(outcome.records)

    @property
    def records(self) -> List[ErrorRecord]:
        return list(self._records)

    @property
    def error_count(self) -> int:
        return sum(1 for r in self._records if r.severity == ERROR)

    @property
    def warning_count(self) -> int:
        return sum(1 for r in self._records if r.severity == WARNING)

    def failed_actions(self) -> List[ActionRecord]:
        return [a for a in self.actions if not a.ok and a.mode == "apply"]

    def mutating_actions(self) -> List[ActionRecord]:
        return [a for a in self.actions if a.mode == "apply"]

    def finish(self) -> None:
        if self.finished_at is None:
            self.finished_at = time.time()

    @property
    def elapsed(self) -> float:
        end = self.finished_at if self.finished_at is not None else time.time()
        return max(0.0, end - self.started_at)

    def elapsed_str(self) -> str:
        secs = int(self.elapsed)
        return f"{secs // 60}m{secs % 60:02d}s"

    def exit_code(self, dry_run: bool = False) -> int:
        if dry_run:
            return 0
        return 1 if self.error_count > 0 else 0
