from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from .awscli import AwsCli
from .model import Ctx, ResourceRef


@dataclass(frozen=True)
class Query:
    """
    One discovery filter: the read call to make, where the items live in the
    response, and which field identifies an item. `predicate` narrows the
    items client-side (name patterns, unattached target groups, ...).
    """

    kind: str
    args: Sequence[str]
    items_key: str
    id_key: str
    scope: str = ""
    discovery: str = "tag"
    state_key: str = ""
    predicate: Optional[Callable[[Dict[str, Any]], bool]] = None


def evaluate(aws: AwsCli, query: Query) -> List[ResourceRef]:
    data = aws.json(list(query.args)) or {}
    refs: List[ResourceRef] = []
    for item in data.get(query.items_key, []) or []:
        ident = item.get(query.id_key)
        if not ident:
            continue
        if query.predicate is not None and not query.predicate(item):
            continue
        refs.append(
            ResourceRef(
                kind=query.kind,
                ident=ident,
                scope=query.scope,
                discovery=query.discovery,
                state=str(item.get(query.state_key, "")) if query.state_key else "",
            )
        )
    return refs


def dedupe(refs: Iterable[ResourceRef]) -> List[ResourceRef]:
    """Keep the first reference per identifier, preserving discovery order."""
    seen: set[str] = set()
    out: List[ResourceRef] = []
    for ref in refs:
        if ref.ident in seen:
            continue
        seen.add(ref.ident)
        out.append(ref)
    return out


def discover(aws: AwsCli, queries: Iterable[Query]) -> List[ResourceRef]:
    found: List[ResourceRef] = []
    for q in queries:
        found.extend(evaluate(aws, q))
    return dedupe(found)


def tagged(ctx: Ctx, kind: str, resource_type: str, tag_key: str, tag_value: str) -> Query:
    return Query(
        kind=kind,
        args=[
            "resourcegroupstaggingapi",
            "get-resources",
            "--tag-filters",
            f"Key={tag_key},Values={tag_value}",
            "--resource-type-filters",
            resource_type,
            "--region",
            ctx.region,
        ],
        items_key="ResourceTagMappingList",
        id_key="ResourceARN",
        scope=ctx.region,
    )


def ec2_filtered(
    ctx: Ctx,
    kind: str,
    describe: str,
    items_key: str,
    id_key: str,
    filters: Sequence[str],
    *,
    discovery: str = "tag",
    state_key: str = "",
    predicate: Optional[Callable[[Dict[str, Any]], bool]] = None,
    filter_flag: str = "--filters",
) -> Query:
    return Query(
        kind=kind,
        args=["ec2", describe, filter_flag, *filters, "--region", ctx.region],
        items_key=items_key,
        id_key=id_key,
        scope=ctx.region,
        discovery=discovery,
        state_key=state_key,
        predicate=predicate,
    )


def discover_vpc_id(ctx: Ctx, aws: AwsCli) -> Optional[str]:
    """
    Discover the VPC by Name tag. Tries the cluster name first, then the
    environment prefix used by the network stack.
    """
    for pattern in (f"{ctx.cluster_name}*", f"{ctx.environment}*"):
        refs = evaluate(
            aws,
            ec2_filtered(
                ctx,
                "vpc",
                "describe-vpcs",
                "Vpcs",
                "VpcId",
                [f"Name=tag:Name,Values={pattern}"],
                discovery="pattern",
            ),
        )
        if refs:
            return refs[0].ident
    return None
