from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Sequence

from .doer import Doer
from .errors import UsageError
from .model import PhaseOutcome, Summary

PhaseFn = Callable[[Doer, PhaseOutcome], None]


@dataclass(frozen=True)
class Phase:
    name: str
    run: PhaseFn
    fatal: bool = False
    needs_cluster: bool = False


def run_phase(doer: Doer, phase: Phase, number: int) -> PhaseOutcome:
    outcome = PhaseOutcome(name=phase.name, dry_run=doer.ctx.dry_run)
    print("")
    print(f"━━━ Phase {number}: {phase.name} ━━━")
    start = time.monotonic()
    try:
        if phase.needs_cluster and not doer.ctx.kubectl_available:
            outcome.skipped = True
            outcome.warn(f"kubectl not available; skipping {phase.name}")
        else:
            phase.run(doer, outcome)
    except UsageError:
        if phase.fatal:
            raise
        outcome.error(f"{phase.name} aborted by usage error")
    except Exception as e:  # noqa: BLE001
        if phase.fatal:
            raise
        outcome.error(f"{phase.name} failed: {e}")
    finally:
        outcome.duration = time.monotonic() - start

    if outcome.errors:
        print(f"--- {phase.name} finished with {len(outcome.errors)} error(s)")
    elif not outcome.skipped:
        print(f"--- {phase.name} complete")
    return outcome


def run_phases(doer: Doer, phases: Sequence[Phase]) -> Summary:
    """
    Run phases strictly in order and merge their outcomes. Only a fatal phase
    can stop the run, and only by raising before any later phase starts.
    """
    summary = doer.summary
    for number, phase in enumerate(phases):
        summary.add_outcome(run_phase(doer, phase, number))
    summary.finish()
    return summary
