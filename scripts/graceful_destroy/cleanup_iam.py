from __future__ import annotations

from typing import List

from .awscli import CliError
from .discover import Query, dedupe, evaluate
from .doer import Doer
from .model import Ctx, PhaseOutcome, ResourceRef


def node_role_name(ctx: Ctx) -> str:
    return f"{ctx.cluster_name}-karpenter-node"


def _matches_cluster(ctx: Ctx, name: str) -> bool:
    return name.startswith(f"{ctx.cluster_name}_") or name.startswith(
        f"{ctx.cluster_name}-karpenter"
    )


def profiles_for_role(ctx: Ctx) -> Query:
    return Query(
        kind="instance-profile",
        args=["iam", "list-instance-profiles-for-role", "--role-name", node_role_name(ctx)],
        items_key="InstanceProfiles",
        id_key="InstanceProfileName",
        discovery="list",
    )


def profiles_by_pattern(ctx: Ctx) -> Query:
    return Query(
        kind="instance-profile",
        args=["iam", "list-instance-profiles"],
        items_key="InstanceProfiles",
        id_key="InstanceProfileName",
        discovery="pattern",
        predicate=lambda p: _matches_cluster(ctx, p.get("InstanceProfileName") or ""),
    )


def _attached_roles(doer: Doer, profile: str) -> List[str]:
    data = (
        doer.aws.json(["iam", "get-instance-profile", "--instance-profile-name", profile])
        or {}
    )
    roles = (data.get("InstanceProfile", {}) or {}).get("Roles", []) or []
    return [r["RoleName"] for r in roles if r.get("RoleName")]


def detach_and_delete_profile(
    doer: Doer, outcome: PhaseOutcome, ref: ResourceRef, *, delete: bool = True
) -> bool:
    name = ref.ident
    try:
        roles = _attached_roles(doer, name)
    except CliError as e:
        if "nosuchentity" in str(e).lower():
            return True
        raise

    ok = True
    for role in roles:
        res = doer.run_allow_fail(
            f"iam remove role from instance profile {name}/{role}",
            [
                "iam",
                "remove-role-from-instance-profile",
                "--instance-profile-name",
                name,
                "--role-name",
                role,
            ],
        )
        if res.rc != 0:
            outcome.warn(f"failed to remove role {role} from {name}", ref)
            ok = False

    if not delete:
        return ok

    res = doer.run_allow_fail(
        f"iam delete instance profile {name}",
        ["iam", "delete-instance-profile", "--instance-profile-name", name],
    )
    if res.rc != 0:
        outcome.warn(f"failed to delete instance profile {name}", ref)
        ok = False
    return ok


def discover_profiles(doer: Doer, outcome: PhaseOutcome) -> List[ResourceRef]:
    """
    Both strategies, deduplicated. Profiles created at runtime by Karpenter
    are only visible through the name pattern once the node role is gone.
    """
    ctx = doer.ctx
    found: List[ResourceRef] = []
    try:
        found.extend(evaluate(doer.aws, profiles_for_role(ctx)))
    except CliError as e:
        if "nosuchentity" not in str(e).lower():
            outcome.warn(f"role lookup for {node_role_name(ctx)} failed: {e}")
        else:
            outcome.info(f"role {node_role_name(ctx)} not found (may already be deleted)")
    found.extend(evaluate(doer.aws, profiles_by_pattern(ctx)))
    return dedupe(found)


def cleanup_instance_profiles(doer: Doer, outcome: PhaseOutcome) -> None:
    """
    The stack destroyer cannot delete the node role while any instance
    profile still references it.
    """
    ctx = doer.ctx
    profiles = discover_profiles(doer, outcome)
    if not profiles:
        outcome.info("no instance profiles found")
        return

    role = node_role_name(ctx)
    for ref in profiles:
        # The profile named after the role belongs to the stack; only detach it.
        owned_by_stack = ref.ident == role
        outcome.info(f"instance profile {ref.ident} ({ref.discovery})")
        detach_and_delete_profile(doer, outcome, ref, delete=not owned_by_stack)
    outcome.ok(f"instance profile cleanup complete ({len(profiles)})")
