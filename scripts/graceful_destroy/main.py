from __future__ import annotations

import argparse
import functools
import os
import sys
import time
from dataclasses import replace
from typing import Callable, List, Optional

from .awscli import AwsCli
from .cleanup_iam import cleanup_instance_profiles
from .cleanup_k8s import cleanup_argocd, cleanup_karpenter, cleanup_load_balancers, cleanup_storage
from .cleanup_orphans import cleanup_orphans
from .cleanup_stacks import StackTool, destroy_stacks
from .cleanup_vpc import cleanup_vpc
from .doer import Doer
from .errors import UsageError
from .guards import preflight
from .kubectl import Kubectl
from .model import ENVIRONMENTS, Ctx, Summary, Timeouts
from .phases import Phase, run_phases
from .report import print_summary


def build_phases(stack_tool: StackTool, prompt: Callable[[str], str] = input) -> List[Phase]:
    # Order matters: cluster objects before the stacks that host their
    # controllers, stacks before the VPC sweep, orphans last.
    return [
        Phase("Preflight", functools.partial(preflight, prompt=prompt), fatal=True),
        Phase("ArgoCD Cleanup", cleanup_argocd, needs_cluster=True),
        Phase("Karpenter Cleanup", cleanup_karpenter, needs_cluster=True),
        Phase("Load Balancer / DNS Cleanup", cleanup_load_balancers, needs_cluster=True),
        Phase("Storage Cleanup", cleanup_storage, needs_cluster=True),
        Phase("IAM Instance Profiles", cleanup_instance_profiles),
        Phase("Stack Destroy", functools.partial(destroy_stacks, tool=stack_tool)),
        Phase("VPC Cleanup", cleanup_vpc),
        Phase("Orphan Cleanup", cleanup_orphans),
    ]


def _stack_list(value: str) -> List[str]:
    stacks = [s.strip() for s in value.split(",") if s.strip()]
    if not stacks:
        raise argparse.ArgumentTypeError("expected a comma-separated list of stack names")
    return stacks


def _seconds(value: str) -> int:
    try:
        secs = int(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"not a number of seconds: {value}") from e
    if secs <= 0:
        raise argparse.ArgumentTypeError("timeout must be positive")
    return secs


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="graceful-destroy",
        add_help=True,
        description=(
            "Gracefully destroy an EKS environment: cluster objects first, "
            "then the stacks, then the VPC graph and orphaned resources."
        ),
    )
    parser.add_argument("--environment", "-e", required=True, choices=ENVIRONMENTS)
    parser.add_argument("--region", "-r", default="us-west-2")
    parser.add_argument(
        "--auto-approve", action="store_true", help="skip the confirmation prompt"
    )
    parser.add_argument(
        "--skip-stack-destroy",
        action="store_true",
        help="clean up cluster and cloud resources but leave the stacks alone",
    )
    parser.add_argument(
        "--dry-run", action="store_true", help="show what would be deleted, change nothing"
    )
    parser.add_argument("--expected-account-id", default="")
    parser.add_argument("--kube-context", default=None)
    parser.add_argument(
        "--update-kubeconfig",
        action="store_true",
        help="run `aws eks update-kubeconfig` for the cluster before probing it",
    )
    parser.add_argument(
        "--stacks",
        type=_stack_list,
        default=None,
        help="comma-separated stacks to destroy, in order",
    )
    parser.add_argument(
        "--stack-destroy-cmd",
        default=None,
        help="destroy command template with {stack}, {environment} and {region}",
    )
    parser.add_argument("--node-timeout", type=_seconds, default=None)
    parser.add_argument("--k8s-timeout", type=_seconds, default=None)
    parser.add_argument("--lb-timeout", type=_seconds, default=None)
    return parser


def _timeouts(args: argparse.Namespace) -> Timeouts:
    t = Timeouts()
    if args.node_timeout:
        t = replace(t, node_termination=args.node_timeout)
    if args.k8s_timeout:
        t = replace(t, k8s_objects=args.k8s_timeout)
    if args.lb_timeout:
        t = replace(t, lb_deregister=args.lb_timeout)
    return t


def main(
    argv: List[str],
    *,
    aws: Optional[AwsCli] = None,
    kube: Optional[Kubectl] = None,
    stack_tool: Optional[StackTool] = None,
    prompt: Callable[[str], str] = input,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    args = build_parser().parse_args(argv[1:])

    os.environ.setdefault("AWS_PAGER", "")
    os.environ["AWS_REGION"] = args.region
    os.environ["AWS_DEFAULT_REGION"] = args.region

    ctx = Ctx(
        environment=args.environment,
        region=args.region,
        dry_run=args.dry_run,
        auto_approve=args.auto_approve,
        skip_stack_destroy=args.skip_stack_destroy,
        expected_account_id=args.expected_account_id,
        update_kubeconfig=args.update_kubeconfig,
        stacks=tuple(args.stacks or ()),
        timeouts=_timeouts(args),
    )
    summary = Summary(started_at=ctx.started_at)
    doer = Doer(
        ctx=ctx,
        aws=aws or AwsCli(),
        kube=kube or Kubectl(context=args.kube_context),
        summary=summary,
        clock=clock,
        sleep=sleep,
    )

    if ctx.dry_run:
        print("--- DRY RUN: no resources will be modified")

    try:
        run_phases(doer, build_phases(stack_tool or StackTool(args.stack_destroy_cmd), prompt))
    except UsageError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 2

    print_summary(doer.ctx, summary)
    return summary.exit_code(dry_run=doer.ctx.dry_run)


def run() -> None:
    raise SystemExit(main(sys.argv))


if __name__ == "__main__":
    run()
