from __future__ import annotations

from typing import Callable, List, Optional, Sequence, Tuple

from .awscli import CliError
from .discover import dedupe, discover_vpc_id, ec2_filtered, evaluate
from .doer import Doer
from .model import PhaseOutcome, ResourceRef


def _vpc_filter(vpc_id: str) -> str:
    return f"Name=vpc-id,Values={vpc_id}"


def _endpoint_enis(doer: Doer, vpc_id: str) -> int:
    ctx = doer.ctx
    data = (
        doer.aws.json(
            [
                "ec2",
                "describe-network-interfaces",
                "--filters",
                _vpc_filter(vpc_id),
                "Name=interface-type,Values=vpc_endpoint",
                "--region",
                ctx.region,
            ]
        )
        or {}
    )
    return len(data.get("NetworkInterfaces", []) or [])


def vpc_endpoints_delete(doer: Doer, outcome: PhaseOutcome, vpc_id: str) -> None:
    ctx = doer.ctx
    endpoints = evaluate(
        doer.aws,
        ec2_filtered(
            ctx, "vpc-endpoint", "describe-vpc-endpoints", "VpcEndpoints", "VpcEndpointId",
            [_vpc_filter(vpc_id)], discovery="list",
        ),
    )
    if not endpoints:
        outcome.info("no VPC endpoints found")
        return

    for ref in endpoints:
        res = doer.run_allow_fail(
            f"ec2 delete vpc endpoint {ref.ident}",
            [
                "ec2",
                "delete-vpc-endpoints",
                "--vpc-endpoint-ids",
                ref.ident,
                "--region",
                ctx.region,
            ],
            ignore_stderr_substrings=[
                "Operation is not allowed for requester-managed VPC endpoints"
            ],
        )
        if res.rc != 0:
            outcome.warn(f"failed to delete endpoint {ref.ident}", ref)

    # Endpoint ENIs block subnet deletion until they are released.
    t = ctx.timeouts
    if doer.wait(
        "VPC endpoint ENIs",
        lambda: _endpoint_enis(doer, vpc_id),
        ceiling=t.endpoint_eni_release,
        interval=t.vpc_interval,
    ):
        outcome.ok("VPC endpoint ENIs released")
    else:
        outcome.warn("timeout waiting for endpoint ENIs to release")


def available_enis_delete(doer: Doer, outcome: PhaseOutcome, vpc_id: str) -> None:
    ctx = doer.ctx
    enis = evaluate(
        doer.aws,
        ec2_filtered(
            ctx, "network-interface", "describe-network-interfaces", "NetworkInterfaces",
            "NetworkInterfaceId", [_vpc_filter(vpc_id), "Name=status,Values=available"],
            discovery="list", state_key="Status",
        ),
    )
    if not enis:
        outcome.info("no dangling ENIs found")
    for ref in enis:
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
        )
        if res.rc != 0:
            outcome.warn(f"failed to delete ENI {ref.ident}", ref)

    data = (
        doer.aws.json(
            [
                "ec2",
                "describe-network-interfaces",
                "--filters",
                _vpc_filter(vpc_id),
                "--region",
                ctx.region,
            ]
        )
        or {}
    )
    in_use = [
        e for e in data.get("NetworkInterfaces", []) or [] if e.get("Status") != "available"
    ]
    if in_use:
        print(f"--- {len(in_use)} ENI(s) still in use in {vpc_id}; these may block deletion")


def strip_group_references(doer: Doer, outcome: PhaseOutcome, group_ids: Sequence[str]) -> None:
    """
    Revoke every rule that points at another security group, on every group,
    before any group is deleted. A group referenced by another group's rule
    cannot be deleted, and two groups can reference each other.
    """
    ctx = doer.ctx
    for gid in group_ids:
        data = (
            doer.aws.json(
                [
                    "ec2",
                    "describe-security-group-rules",
                    "--filters",
                    f"Name=group-id,Values={gid}",
                    "--region",
                    ctx.region,
                ]
            )
            or {}
        )
        refs = [
            r
            for r in data.get("SecurityGroupRules", []) or []
            if r.get("ReferencedGroupInfo") and r.get("SecurityGroupRuleId")
        ]
        ingress = [r["SecurityGroupRuleId"] for r in refs if not r.get("IsEgress")]
        egress = [r["SecurityGroupRuleId"] for r in refs if r.get("IsEgress")]
        for direction, rule_ids in (("ingress", ingress), ("egress", egress)):
            if not rule_ids:
                continue
            res = doer.run_allow_fail(
                f"ec2 revoke sg {direction} {gid} ({len(rule_ids)} rule(s))",
                [
                    "ec2",
                    f"revoke-security-group-{direction}",
                    "--group-id",
                    gid,
                    "--security-group-rule-ids",
                    *rule_ids,
                    "--region",
                    ctx.region,
                ],
                ignore_stderr_substrings=["InvalidPermission.NotFound"],
            )
            if res.rc != 0:
                outcome.warn(f"failed to revoke {direction} rules on {gid}")


def delete_security_groups(
    doer: Doer,
    refs: Sequence[ResourceRef],
    on_failure: Callable[[str, ResourceRef], None],
) -> List[ResourceRef]:
    ctx = doer.ctx
    failed: List[ResourceRef] = []
    for ref in refs:
        res = doer.run_allow_fail(
            f"ec2 delete security group {ref.ident}",
            ["ec2", "delete-security-group", "--group-id", ref.ident, "--region", ctx.region],
            ignore_stderr_substrings=["InvalidGroup.NotFound"],
        )
        if res.rc != 0:
            on_failure(f"failed to delete SG {ref.ident}: {res.last_error_line()}", ref)
            failed.append(ref)
    return failed


def _non_default_groups(doer: Doer, vpc_id: str) -> List[ResourceRef]:
    return evaluate(
        doer.aws,
        ec2_filtered(
            doer.ctx, "security-group", "describe-security-groups", "SecurityGroups",
            "GroupId", [_vpc_filter(vpc_id)], discovery="list",
            predicate=lambda sg: sg.get("GroupName") != "default",
        ),
    )


def security_group_references_strip(doer: Doer, outcome: PhaseOutcome, vpc_id: str) -> None:
    groups = _non_default_groups(doer, vpc_id)
    strip_group_references(doer, outcome, [g.ident for g in groups])


def security_groups_delete(doer: Doer, outcome: PhaseOutcome, vpc_id: str) -> None:
    groups = _non_default_groups(doer, vpc_id)
    if not groups:
        outcome.info("no non-default security groups found")
        return
    delete_security_groups(doer, groups, outcome.warn)


def subnets_delete(doer: Doer, outcome: PhaseOutcome, vpc_id: str) -> None:
    ctx = doer.ctx
    subnets = evaluate(
        doer.aws,
        ec2_filtered(
            ctx, "subnet", "describe-subnets", "Subnets", "SubnetId",
            [_vpc_filter(vpc_id)], discovery="list",
        ),
    )
    for ref in subnets:
        res = doer.run_allow_fail(
            f"ec2 delete subnet {ref.ident}",
            ["ec2", "delete-subnet", "--subnet-id", ref.ident, "--region", ctx.region],
        )
        if res.rc != 0:
            outcome.warn(f"failed to delete subnet {ref.ident}", ref)


def igw_detach_delete(doer: Doer, outcome: PhaseOutcome, vpc_id: str) -> None:
    ctx = doer.ctx
    igws = evaluate(
        doer.aws,
        ec2_filtered(
            ctx, "internet-gateway", "describe-internet-gateways", "InternetGateways",
            "InternetGatewayId", [f"Name=attachment.vpc-id,Values={vpc_id}"],
            discovery="list",
        ),
    )
    for ref in igws:
        doer.run_allow_fail(
            f"ec2 detach igw {ref.ident}",
            [
                "ec2",
                "detach-internet-gateway",
                "--internet-gateway-id",
                ref.ident,
                "--vpc-id",
                vpc_id,
                "--region",
                ctx.region,
            ],
            ignore_stderr_substrings=["Gateway.NotAttached"],
        )
        res = doer.run_allow_fail(
            f"ec2 delete igw {ref.ident}",
            [
                "ec2",
                "delete-internet-gateway",
                "--internet-gateway-id",
                ref.ident,
                "--region",
                ctx.region,
            ],
        )
        if res.rc != 0:
            outcome.warn(f"failed to delete IGW {ref.ident}", ref)


def route_tables_disassociate_delete(doer: Doer, outcome: PhaseOutcome, vpc_id: str) -> None:
    ctx = doer.ctx
    data = (
        doer.aws.json(
            [
                "ec2",
                "describe-route-tables",
                "--filters",
                _vpc_filter(vpc_id),
                "--region",
                ctx.region,
            ]
        )
        or {}
    )
    for rt in data.get("RouteTables", []) or []:
        rtb = rt.get("RouteTableId")
        if not rtb:
            continue
        assocs = rt.get("Associations", []) or []
        is_main = any(a.get("Main") for a in assocs)
        for a in assocs:
            if a.get("Main"):
                continue
            assoc_id = a.get("RouteTableAssociationId")
            if assoc_id:
                doer.run_allow_fail(
                    f"ec2 disassociate route table {assoc_id}",
                    [
                        "ec2",
                        "disassociate-route-table",
                        "--association-id",
                        assoc_id,
                        "--region",
                        ctx.region,
                    ],
                )
        if not is_main:
            res = doer.run_allow_fail(
                f"ec2 delete route table {rtb}",
                [
                    "ec2",
                    "delete-route-table",
                    "--route-table-id",
                    rtb,
                    "--region",
                    ctx.region,
                ],
            )
            if res.rc != 0:
                outcome.warn(f"failed to delete route table {rtb}")


def _nat_query_args(doer: Doer, vpc_id: str, states: str) -> List[str]:
    return [
        "ec2",
        "describe-nat-gateways",
        "--filter",
        _vpc_filter(vpc_id),
        f"Name=state,Values={states}",
        "--region",
        doer.ctx.region,
    ]


def nat_delete(doer: Doer, outcome: PhaseOutcome, vpc_id: str) -> List[str]:
    """
    Delete available NAT gateways and block until none is in a transitional
    state; they pin Elastic IPs and ENIs. Returns their allocation ids.
    """
    ctx = doer.ctx
    data = doer.aws.json(_nat_query_args(doer, vpc_id, "available")) or {}
    allocs: List[str] = []
    nats = data.get("NatGateways", []) or []
    if not nats:
        outcome.info("no NAT gateways found")
        return allocs

    for nat in nats:
        nat_id = nat.get("NatGatewayId")
        if not nat_id:
            continue
        for addr in nat.get("NatGatewayAddresses", []) or []:
            a = addr.get("AllocationId")
            if a:
                allocs.append(a)
        res = doer.run_allow_fail(
            f"ec2 delete nat gateway {nat_id}",
            [
                "ec2",
                "delete-nat-gateway",
                "--nat-gateway-id",
                nat_id,
                "--region",
                ctx.region,
            ],
        )
        if res.rc != 0:
            outcome.warn(f"failed to delete NAT gateway {nat_id}")

    def _pending() -> int:
        d = doer.aws.json(_nat_query_args(doer, vpc_id, "pending,available,deleting")) or {}
        return len(d.get("NatGateways", []) or [])

    t = ctx.timeouts
    if doer.wait("NAT gateways", _pending, ceiling=t.nat_delete, interval=t.vpc_interval):
        outcome.ok("NAT gateways deleted")
    else:
        outcome.warn("timeout waiting for NAT gateways to delete")
    return allocs


def elastic_ips_release(
    doer: Doer, outcome: PhaseOutcome, vpc_id: str, nat_allocations: Sequence[str] = ()
) -> None:
    ctx = doer.ctx
    refs = [
        ResourceRef(kind="elastic-ip", ident=a, scope=ctx.region, discovery="list")
        for a in nat_allocations
    ]
    for pattern in (f"*{ctx.cluster_name}*", f"*{ctx.environment}*"):
        refs.extend(
            evaluate(
                doer.aws,
                ec2_filtered(
                    ctx, "elastic-ip", "describe-addresses", "Addresses", "AllocationId",
                    [f"Name=tag:Name,Values={pattern}"], discovery="pattern",
                    predicate=lambda addr: not addr.get("AssociationId"),
                ),
            )
        )
    for ref in dedupe(refs):
        res = doer.run_allow_fail(
            f"ec2 release address {ref.ident}",
            ["ec2", "release-address", "--allocation-id", ref.ident, "--region", ctx.region],
            ignore_stderr_substrings=["InvalidAllocationID.NotFound"],
        )
        if res.rc != 0:
            outcome.warn(f"failed to release EIP {ref.ident}", ref)


def vpc_delete(doer: Doer, outcome: PhaseOutcome, vpc_id: str) -> None:
    ctx = doer.ctx
    res = doer.run_allow_fail(
        f"ec2 delete vpc {vpc_id}",
        ["ec2", "delete-vpc", "--vpc-id", vpc_id, "--region", ctx.region],
        ignore_stderr_substrings=["InvalidVpcID.NotFound"],
    )
    if res.rc == 0:
        outcome.ok(f"VPC {vpc_id} deleted")
    else:
        outcome.failed(
            f"failed to delete VPC {vpc_id}; some resources may still be attached",
            res,
            ResourceRef(kind="vpc", ident=vpc_id, scope=ctx.region),
        )


def cleanup_vpc(doer: Doer, outcome: PhaseOutcome, vpc_id: Optional[str] = None) -> None:
    """
    Tear down what the network stack retained. Every step is best-effort and
    the VPC delete is always attempted last.
    """
    ctx = doer.ctx
    vpc_id = vpc_id or discover_vpc_id(ctx, doer.aws)
    if not vpc_id:
        outcome.ok(f"no VPC found for cluster {ctx.cluster_name}")
        return
    outcome.info(f"VPC_ID={vpc_id}")

    nat_allocations: List[str] = []

    def _nat(d: Doer, o: PhaseOutcome, v: str) -> None:
        nat_allocations.extend(nat_delete(d, o, v))

    def _eips(d: Doer, o: PhaseOutcome, v: str) -> None:
        elastic_ips_release(d, o, v, nat_allocations)

    steps: Tuple[Tuple[str, Callable[[Doer, PhaseOutcome, str], None]], ...] = (
        ("VPC endpoints", vpc_endpoints_delete),
        ("dangling ENIs", available_enis_delete),
        ("security group references", security_group_references_strip),
        ("security groups", security_groups_delete),
        ("subnets", subnets_delete),
        ("internet gateways", igw_detach_delete),
        ("route tables", route_tables_disassociate_delete),
        ("NAT gateways", _nat),
        ("elastic IPs", _eips),
    )
    for label, step in steps:
        print(f"--- {label} in {vpc_id}")
        try:
            step(doer, outcome, vpc_id)
        except CliError as e:
            outcome.warn(f"{label}: {e}")

    vpc_delete(doer, outcome, vpc_id)
