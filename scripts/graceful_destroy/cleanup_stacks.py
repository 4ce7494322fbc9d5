from __future__ import annotations

import os
import shlex
from typing import List, Optional, Sequence

from .awscli import CliError, CommandRunner
from .doer import Doer
from .errors import StackDeleteFailed
from .model import Ctx, PhaseOutcome

DEFAULT_DESTROY_CMD = (
    "npx cdk destroy {stack} --force -c environment={environment} -c region={region}"
)

# Reverse dependency order.
STACK_SUFFIXES = ("argocd", "karpenter", "bootstrap", "cluster", "network")

GONE = "NOT_FOUND"


def default_stacks(environment: str) -> List[str]:
    return [f"{environment}-{suffix}" for suffix in STACK_SUFFIXES]


class StackTool(CommandRunner):
    """Runs the declarative destroy command for one stack."""

    def __init__(self, template: Optional[str] = None):
        super().__init__()
        self.template = (
            template or os.environ.get("GRACEFUL_DESTROY_STACK_CMD") or DEFAULT_DESTROY_CMD
        )

    def destroy_args(self, ctx: Ctx, stack: str) -> List[str]:
        return shlex.split(
            self.template.format(stack=stack, environment=ctx.environment, region=ctx.region)
        )


def stack_status(doer: Doer, stack: str) -> str:
    ctx = doer.ctx
    try:
        data = (
            doer.aws.json(
                [
                    "cloudformation",
                    "describe-stacks",
                    "--stack-name",
                    stack,
                    "--region",
                    ctx.region,
                ]
            )
            or {}
        )
    except CliError as e:
        if "does not exist" in str(e).lower():
            return GONE
        raise
    stacks = data.get("Stacks", []) or []
    if not stacks:
        return GONE
    status = stacks[0].get("StackStatus") or ""
    return GONE if status == "DELETE_COMPLETE" else status


def failed_resources(doer: Doer, stack: str) -> List[str]:
    ctx = doer.ctx
    data = (
        doer.aws.json(
            [
                "cloudformation",
                "describe-stack-events",
                "--stack-name",
                stack,
                "--region",
                ctx.region,
            ]
        )
        or {}
    )
    out: List[str] = []
    for ev in data.get("StackEvents", []) or []:
        if ev.get("ResourceStatus") != "DELETE_FAILED":
            continue
        lid = ev.get("LogicalResourceId")
        # The stack itself also reports DELETE_FAILED; it cannot be retained.
        if lid and lid != stack and lid not in out:
            out.append(lid)
    return out


def retain_and_retry(doer: Doer, outcome: PhaseOutcome, stack: str) -> bool:
    """
    Resubmit the delete keeping the resources that blocked it. Retained
    resources are left for the VPC sweep and the orphan audit.
    """
    ctx = doer.ctx
    blocking = failed_resources(doer, stack)
    if not blocking:
        return False

    outcome.info(f"retaining failed resources: {' '.join(blocking)}")
    retain_args: List[str] = []
    for lid in blocking:
        retain_args.extend(["--retain-resources", lid])
    res = doer.run_allow_fail(
        f"cloudformation delete-stack {stack} (retain {len(blocking)})",
        [
            "cloudformation",
            "delete-stack",
            "--stack-name",
            stack,
            "--region",
            ctx.region,
            *retain_args,
        ],
    )
    if res.rc != 0:
        return False

    print(f"--- waiting for stack deletion: {stack}")
    doer.aws.run(
        [
            "cloudformation",
            "wait",
            "stack-delete-complete",
            "--stack-name",
            stack,
            "--region",
            ctx.region,
        ]
    )
    if stack_status(doer, stack) != GONE:
        return False
    outcome.warn(
        f"stack {stack} destroyed with retained resources for later cleanup: {', '.join(blocking)}"
    )
    return True


def destroy_stack(doer: Doer, outcome: PhaseOutcome, tool: StackTool, stack: str) -> None:
    ctx = doer.ctx
    if stack_status(doer, stack) == GONE:
        outcome.info(f"stack {stack} not found (already destroyed)")
        return

    res = doer.command_allow_fail(
        tool, f"destroy stack {stack}", tool.destroy_args(ctx, stack)
    )
    if res.rc == 0:
        outcome.ok(f"stack {stack} destroyed")
        return

    print(f"--- stack {stack} failed; checking for DELETE_FAILED")
    status = stack_status(doer, stack)
    if status == GONE:
        outcome.ok(f"stack {stack} destroyed")
        return
    if status == "DELETE_FAILED" and retain_and_retry(doer, outcome, stack):
        return
    raise StackDeleteFailed(stack, status)


def destroy_stacks(
    doer: Doer,
    outcome: PhaseOutcome,
    tool: Optional[StackTool] = None,
    stacks: Optional[Sequence[str]] = None,
) -> None:
    ctx = doer.ctx
    if ctx.skip_stack_destroy:
        outcome.info("skipping stack destroy (--skip-stack-destroy)")
        return

    tool = tool or StackTool()
    for stack in stacks or ctx.stacks or default_stacks(ctx.environment):
        print(f"--- destroying stack: {stack}")
        try:
            destroy_stack(doer, outcome, tool, stack)
        except StackDeleteFailed as e:
            outcome.error(str(e))
            print("--- continuing with remaining stacks")
        except CliError as e:
            outcome.error(f"stack {stack}: {e}")
            print("--- continuing with remaining stacks")
