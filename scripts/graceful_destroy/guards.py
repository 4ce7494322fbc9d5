from __future__ import annotations

from dataclasses import replace
from typing import Callable

from .awscli import AwsCli, CliError
from .doer import Doer
from .errors import CapabilityUnavailable, UsageError
from .kubectl import Kubectl
from .model import ENVIRONMENTS, Ctx, PhaseOutcome
from .report import box, print_plan


def validate_environment(environment: str) -> None:
    if environment not in ENVIRONMENTS:
        raise UsageError(
            f"invalid environment: {environment} (must be one of {', '.join(ENVIRONMENTS)})"
        )


def identity_guard(ctx: Ctx, aws: AwsCli) -> Ctx:
    try:
        ident = aws.json(["sts", "get-caller-identity", "--region", ctx.region]) or {}
    except CliError as e:
        raise UsageError(f"AWS credentials not valid: {e}") from e
    acct = str(ident.get("Account") or "")
    arn = str(ident.get("Arn") or "")
    if not acct:
        raise UsageError("AWS identity lookup returned no account")
    print(f"--- identity={arn}")
    if ctx.expected_account_id and acct != ctx.expected_account_id:
        raise UsageError(f"expected account {ctx.expected_account_id}, got {acct}")
    return replace(ctx, account_id=acct, caller_arn=arn)


def cluster_probe(ctx: Ctx, aws: AwsCli, kube: Kubectl) -> None:
    if ctx.update_kubeconfig:
        print(f"--- configuring kubeconfig for cluster {ctx.cluster_name}")
        res = aws.run(
            ["eks", "update-kubeconfig", "--name", ctx.cluster_name, "--region", ctx.region]
        )
        if not res.ok:
            raise CapabilityUnavailable(f"update-kubeconfig failed: {res.last_error_line()}")
    if not kube.reachable():
        raise CapabilityUnavailable(f"kubectl cannot reach cluster {ctx.cluster_name}")


def confirm(ctx: Ctx, prompt: Callable[[str], str] = input) -> None:
    if ctx.auto_approve:
        return
    print("  This will permanently destroy all resources.")
    try:
        answer = prompt("  Type the environment name to confirm: ")
    except EOFError as e:
        raise UsageError("confirmation failed: no input") from e
    if answer.strip() != ctx.environment:
        raise UsageError("confirmation failed, aborting")


def preflight(doer: Doer, outcome: PhaseOutcome, prompt: Callable[[str], str] = input) -> None:
    ctx = doer.ctx
    validate_environment(ctx.environment)

    if ctx.environment == "production":
        print(box(["WARNING: You are about to destroy PRODUCTION"]))

    ctx = identity_guard(ctx, doer.aws)
    outcome.ok(f"AWS credentials valid (account: {ctx.account_id})")

    try:
        cluster_probe(ctx, doer.aws, doer.kube)
        outcome.ok("kubectl connected")
    except CapabilityUnavailable as e:
        outcome.warn(f"{e}; Kubernetes cleanup phases will be skipped")
        ctx = replace(ctx, kubectl_available=False)

    doer.ctx = ctx
    print_plan(ctx)
    confirm(ctx, prompt)
