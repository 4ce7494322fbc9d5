from __future__ import annotations

from typing import List

from .awscli import CliError, CliResult
from .cleanup_iam import detach_and_delete_profile, profiles_by_pattern
from .cleanup_vpc import delete_security_groups, strip_group_references
from .discover import Query, discover, ec2_filtered, tagged
from .doer import Doer
from .model import PhaseOutcome, ResourceRef
from .poll import wait_for_zero

LB_TAG = "elbv2.k8s.aws/cluster"


def _owned_tag(cluster: str) -> str:
    return f"Name=tag:kubernetes.io/cluster/{cluster},Values=owned"


def load_balancer_queries(doer: Doer) -> List[Query]:
    ctx = doer.ctx
    return [
        tagged(ctx, "load-balancer", "elasticloadbalancing:loadbalancer", LB_TAG, ctx.cluster_name)
    ]


def target_group_queries(doer: Doer) -> List[Query]:
    ctx = doer.ctx
    return [
        tagged(ctx, "target-group", "elasticloadbalancing:targetgroup", LB_TAG, ctx.cluster_name)
    ]


def security_group_queries(doer: Doer) -> List[Query]:
    ctx = doer.ctx
    c = ctx.cluster_name
    return [
        ec2_filtered(ctx, "security-group", "describe-security-groups", "SecurityGroups",
                     "GroupId", [_owned_tag(c)]),
        ec2_filtered(ctx, "security-group", "describe-security-groups", "SecurityGroups",
                     "GroupId", [f"Name=tag:{LB_TAG},Values={c}"]),
    ]


def volume_queries(doer: Doer) -> List[Query]:
    ctx = doer.ctx
    c = ctx.cluster_name
    available = "Name=status,Values=available"
    return [
        ec2_filtered(ctx, "volume", "describe-volumes", "Volumes", "VolumeId",
                     [_owned_tag(c), available], state_key="State"),
        ec2_filtered(ctx, "volume", "describe-volumes", "Volumes", "VolumeId",
                     ["Name=tag:ebs.csi.aws.com/cluster,Values=true", available],
                     state_key="State"),
    ]


def eni_queries(doer: Doer) -> List[Query]:
    ctx = doer.ctx
    c = ctx.cluster_name
    available = "Name=status,Values=available"
    return [
        ec2_filtered(ctx, "network-interface", "describe-network-interfaces",
                     "NetworkInterfaces", "NetworkInterfaceId",
                     [f"Name=tag:cluster.k8s.amazonaws.com/name,Values={c}", available],
                     state_key="Status"),
        ec2_filtered(ctx, "network-interface", "describe-network-interfaces",
                     "NetworkInterfaces", "NetworkInterfaceId",
                     [_owned_tag(c), available], state_key="Status"),
    ]


def delete_load_balancers(doer: Doer, outcome: PhaseOutcome) -> None:
    """
    Load balancers created by the AWS Load Balancer Controller carry
    `elbv2.k8s.aws/cluster`; nothing garbage-collects them once the cluster
    is gone and they block VPC teardown.
    """
    ctx = doer.ctx
    lbs = discover(doer.aws, load_balancer_queries(doer))
    for ref in lbs:
        res = doer.run_allow_fail(
            f"elbv2 delete load balancer {ref.ident}",
            [
                "elbv2",
                "delete-load-balancer",
                "--load-balancer-arn",
                ref.ident,
                "--region",
                ctx.region,
            ],
        )
        if res.rc != 0:
            outcome.failed(f"failed to delete load balancer {ref.ident}", res, ref)
    if lbs:
        doer.settle(ctx.timeouts.orphan_lb_settle)


def _delete_target_group(doer: Doer, outcome: PhaseOutcome, ref: ResourceRef) -> None:
    ctx = doer.ctx
    t = ctx.timeouts
    results: List[CliResult] = []

    def still_in_use() -> int:
        res = doer.run_allow_fail(
            f"elbv2 delete target group {ref.ident}",
            [
                "elbv2",
                "delete-target-group",
                "--target-group-arn",
                ref.ident,
                "--region",
                ctx.region,
            ],
            ignore_stderr_substrings=["TargetGroupNotFound"],
        )
        results.append(res)
        # Listeners are still being torn down.
        return 1 if res.rc != 0 and "resourceinuse" in (res.stderr or "").lower() else 0

    wait_for_zero(
        still_in_use,
        label=f"target group {ref.ident} in use",
        interval=t.target_group_interval,
        ceiling=t.target_group_in_use,
        clock=doer.clock,
        sleep=doer.sleep,
    )
    res = results[-1]
    if res.rc != 0:
        outcome.warn(f"failed to delete target group {ref.ident}: {res.last_error_line()}", ref)


def delete_target_groups(doer: Doer, outcome: PhaseOutcome) -> None:
    for ref in discover(doer.aws, target_group_queries(doer)):
        _delete_target_group(doer, outcome, ref)


def delete_security_groups_tagged(doer: Doer, outcome: PhaseOutcome) -> None:
    groups = discover(doer.aws, security_group_queries(doer))
    if not groups:
        return
    strip_group_references(doer, outcome, [g.ident for g in groups])
    delete_security_groups(doer, groups, outcome.error)


def delete_volumes(doer: Doer, outcome: PhaseOutcome) -> None:
    ctx = doer.ctx
    for ref in discover(doer.aws, volume_queries(doer)):
        res = doer.run_allow_fail(
            f"ec2 delete volume {ref.ident}",
            ["ec2", "delete-volume", "--volume-id", ref.ident, "--region", ctx.region],
            ignore_stderr_substrings=["InvalidVolume.NotFound"],
        )
        if res.rc != 0:
            outcome.failed(f"failed to delete volume {ref.ident}", res, ref)


def delete_enis(doer: Doer, outcome: PhaseOutcome) -> None:
    ctx = doer.ctx
    for ref in discover(doer.aws, eni_queries(doer)):
        res = doer.run_allow_fail(
            f"ec2 delete network interface {ref.ident}",
            [
                "ec2",
                "delete-network-interface",
                "--network-interface-id",
                ref.ident,
                "--region",
                ctx.region,
            ],
            ignore_stderr_substrings=["InvalidNetworkInterfaceID.NotFound"],
        )
        if res.rc != 0:
            outcome.failed(f"failed to delete ENI {ref.ident}", res, ref)


def delete_instance_profiles(doer: Doer, outcome: PhaseOutcome) -> None:
    for ref in discover(doer.aws, [profiles_by_pattern(doer.ctx)]):
        detach_and_delete_profile(doer, outcome, ref, delete=True)


def cleanup_orphans(doer: Doer, outcome: PhaseOutcome) -> None:
    """
    Final sweep for resources created outside the stacks (controllers, CSI
    driver, VPC CNI, Karpenter). Runs even when the stacks were skipped.
    """
    steps = (
        ("load balancers", delete_load_balancers),
        ("target groups", delete_target_groups),
        ("security groups", delete_security_groups_tagged),
        ("EBS volumes", delete_volumes),
        ("network interfaces", delete_enis),
        ("instance profiles", delete_instance_profiles),
    )
    for label, step in steps:
        print(f"--- orphaned {label}")
        before = len(outcome.errors)
        try:
            step(doer, outcome)
        except CliError as e:
            outcome.error(f"orphaned {label}: {e}")
        if len(outcome.errors) == before:
            outcome.ok(f"{label} swept")
