from __future__ import annotations

import time
from typing import Callable, Iterable, Optional, Sequence

from .awscli import AwsCli, CliResult, CommandRunner, fmt
from .kubectl import Kubectl
from .model import ActionRecord, Ctx, Summary
from .poll import wait_for_zero


class Doer:
    """
    The only path to a mutating call. In dry-run every mutation becomes a
    logged plan entry; reads go straight to `aws` / `kube`.
    """

    def __init__(
        self,
        ctx: Ctx,
        aws: AwsCli,
        kube: Kubectl,
        summary: Summary,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.ctx = ctx
        self.aws = aws
        self.kube = kube
        self.summary = summary
        self.clock = clock
        self.sleep = sleep

    def plan(self, desc: str) -> None:
        print(f"+ (dry-run) {desc}")
        self.summary.add_action(ActionRecord(desc=desc, mode="dry-run", ok=True))

    def _run_allow_fail(
        self,
        runner: CommandRunner,
        desc: str,
        args: Sequence[str],
        ignore_stderr_substrings: Optional[Iterable[str]],
        not_found_ok: bool = True,
    ) -> CliResult:
        if self.ctx.dry_run:
            self.plan(fmt(runner.command(args)))
            return CliResult(rc=0, stdout="", stderr="")

        print(f"+ {fmt(runner.command(args))}")
        res = runner.run(args)
        ok = res.rc == 0 or (not_found_ok and res.not_found)

        if not ok and ignore_stderr_substrings:
            lowered = res.stderr.lower()
            for s in ignore_stderr_substrings:
                if s.lower() in lowered:
                    ok = True
                    break

        if not ok:
            print(f"! failed: {desc}: {res.last_error_line()}")

        self.summary.add_action(
            ActionRecord(desc=desc, mode="apply", ok=ok, rc=res.rc, stderr=res.stderr)
        )
        if ok and res.rc != 0:
            # Already gone (or an ignorable condition): report as success.
            return CliResult(rc=0, stdout=res.stdout, stderr=res.stderr)
        return res

    def run_allow_fail(
        self,
        desc: str,
        args: Sequence[str],
        *,
        ignore_stderr_substrings: Optional[Iterable[str]] = None,
    ) -> CliResult:
        return self._run_allow_fail(self.aws, desc, args, ignore_stderr_substrings)

    def kubectl_allow_fail(
        self,
        desc: str,
        args: Sequence[str],
        *,
        ignore_stderr_substrings: Optional[Iterable[str]] = None,
    ) -> CliResult:
        return self._run_allow_fail(self.kube, desc, args, ignore_stderr_substrings)

    def command_allow_fail(
        self,
        runner: CommandRunner,
        desc: str,
        args: Sequence[str],
    ) -> CliResult:
        return self._run_allow_fail(runner, desc, args, None, not_found_ok=False)

    def wait(
        self,
        label: str,
        count: Callable[[], int],
        *,
        ceiling: float,
        interval: float,
    ) -> bool:
        if self.ctx.dry_run:
            self.plan(f"would wait up to {int(ceiling)}s for {label}")
            return True
        return wait_for_zero(
            count,
            label=label,
            interval=interval,
            ceiling=ceiling,
            clock=self.clock,
            sleep=self.sleep,
        )

    def settle(self, seconds: float) -> None:
        if not self.ctx.dry_run and seconds > 0:
            self.sleep(seconds)
