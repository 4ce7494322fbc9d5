from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from .awscli import CliError
from .doer import Doer
from .kubectl import Kubectl
from .model import PhaseOutcome, ResourceRef, Timeouts


@dataclass(frozen=True)
class ReapClass:
    """
    One cluster object class to clear. `window` picks the (ceiling, interval)
    pair from Timeouts; `extra_remaining` adds objects that must also be gone
    but are not ours to delete (e.g. nodes still registered after their claim).
    """

    kind: str
    crd: Optional[str] = None
    namespace: Optional[str] = None
    all_namespaces: bool = False
    spec_type: Optional[str] = None
    window: str = "control"  # control|node|k8s
    keep: Optional[Callable[[ResourceRef], bool]] = None
    extra_remaining: Optional[Callable[[Kubectl], int]] = None


def _window(t: Timeouts, name: str) -> Tuple[int, int]:
    if name == "node":
        return t.node_termination, t.node_interval
    if name == "k8s":
        return t.k8s_objects, t.k8s_interval
    return t.control_objects, t.control_interval


def _list(kube: Kubectl, cls: ReapClass) -> List[ResourceRef]:
    refs = kube.list(
        cls.kind,
        namespace=cls.namespace,
        all_namespaces=cls.all_namespaces,
        spec_type=cls.spec_type,
    )
    if cls.keep is not None:
        refs = [r for r in refs if cls.keep(r)]
    return refs


def _remaining(kube: Kubectl, cls: ReapClass) -> int:
    count = len(_list(kube, cls))
    if cls.extra_remaining is not None:
        count += cls.extra_remaining(kube)
    return count


def reap(doer: Doer, outcome: PhaseOutcome, cls: ReapClass) -> int:
    """
    Delete every instance of `cls`, wait out its ceiling, then escalate once by
    stripping finalizers. Returns how many instances were found.

    A failed read is recorded against the class and the caller moves on to
    the next one.
    """
    try:
        return _reap(doer, outcome, cls)
    except CliError as e:
        outcome.error(f"{cls.kind}: {e}")
        return 0


def _reap(doer: Doer, outcome: PhaseOutcome, cls: ReapClass) -> int:
    kube = doer.kube
    if cls.crd and not kube.crd_installed(cls.crd):
        outcome.info(f"{cls.crd} CRD not found; skipping {cls.kind}")
        return 0

    refs = _list(kube, cls)
    extra = cls.extra_remaining(kube) if cls.extra_remaining is not None else 0
    if not refs and not extra:
        outcome.info(f"no {cls.kind} found")
        return 0

    for ref in refs:
        doer.kubectl_allow_fail(f"kubectl delete {ref}", kube.delete_args(ref))

    ceiling, interval = _window(doer.ctx.timeouts, cls.window)
    if doer.wait(
        cls.kind,
        lambda: _remaining(kube, cls),
        ceiling=ceiling,
        interval=interval,
    ):
        outcome.ok(f"{cls.kind} removed ({len(refs)})")
        return len(refs)

    stuck = _list(kube, cls)
    if stuck:
        print(f"--- {len(stuck)} {cls.kind} stuck after {ceiling}s; removing finalizers")
    for ref in stuck:
        doer.kubectl_allow_fail(
            f"kubectl strip finalizers {ref}", kube.strip_finalizers_args(ref)
        )
        doer.kubectl_allow_fail(f"kubectl delete {ref}", kube.delete_args(ref))
    doer.settle(doer.ctx.timeouts.post_strip_settle)

    left = _list(kube, cls)
    leftover_extra = cls.extra_remaining(kube) if cls.extra_remaining is not None else 0
    if left or leftover_extra:
        names = ", ".join(f"{r.scope}/{r.ident}" if r.scope else r.ident for r in left)
        detail = f" ({names})" if names else ""
        if leftover_extra:
            detail += f"; {leftover_extra} dependent object(s) still present"
        outcome.error(
            f"{len(left)} {cls.kind} could not be deleted{detail}",
            left[0] if len(left) == 1 else None,
        )
    else:
        outcome.ok(f"{cls.kind} removed after finalizer removal")
    return len(refs)


def _registered_karpenter_nodes(kube: Kubectl) -> int:
    return len(kube.list("nodes", selector="karpenter.sh/registered=true"))


ARGOCD_NAMESPACE = "argocd"

APPLICATION_SETS = ReapClass(
    kind="applicationsets",
    crd="applicationsets.argoproj.io",
    namespace=ARGOCD_NAMESPACE,
)
APPLICATIONS = ReapClass(
    kind="applications",
    crd="applications.argoproj.io",
    namespace=ARGOCD_NAMESPACE,
)
APP_PROJECTS = ReapClass(
    kind="appprojects",
    crd="appprojects.argoproj.io",
    namespace=ARGOCD_NAMESPACE,
    keep=lambda r: r.ident != "default",
)

NODE_POOLS = ReapClass(kind="nodepools", crd="nodepools.karpenter.sh")
NODE_CLASSES = ReapClass(kind="ec2nodeclasses", crd="ec2nodeclasses.karpenter.k8s.aws")
NODE_CLAIMS = ReapClass(
    kind="nodeclaims",
    crd="nodeclaims.karpenter.sh",
    window="node",
    extra_remaining=_registered_karpenter_nodes,
)

INGRESSES = ReapClass(kind="ingresses", all_namespaces=True, window="k8s")
LB_SERVICES = ReapClass(
    kind="services",
    all_namespaces=True,
    spec_type="LoadBalancer",
    window="k8s",
)
PVCS = ReapClass(kind="persistentvolumeclaims", all_namespaces=True, window="k8s")


def cleanup_argocd(doer: Doer, outcome: PhaseOutcome) -> None:
    """
    Application layer first: an Argo CD controller left running would
    re-sync NodePools and Services we are about to delete.
    """
    for cls in (APPLICATION_SETS, APPLICATIONS, APP_PROJECTS):
        reap(doer, outcome, cls)


def cleanup_karpenter(doer: Doer, outcome: PhaseOutcome) -> None:
    """
    NodePools, then EC2NodeClasses, then NodeClaims. Karpenter itself must
    still be running here; it is what actually terminates the instances.
    """
    for cls in (NODE_POOLS, NODE_CLASSES, NODE_CLAIMS):
        reap(doer, outcome, cls)


LB_TAG = "elbv2.k8s.aws/cluster"
DESCRIBE_TAGS_BATCH = 20


def _cluster_load_balancers(doer: Doer) -> int:
    """
    Count live load balancers tagged for this cluster. Reads elbv2 directly;
    the tagging index keeps reporting deleted ARNs for a while.
    """
    ctx = doer.ctx
    data = doer.aws.json(["elbv2", "describe-load-balancers", "--region", ctx.region]) or {}
    arns = [lb["LoadBalancerArn"] for lb in data.get("LoadBalancers") or [] if lb.get("LoadBalancerArn")]
    count = 0
    for i in range(0, len(arns), DESCRIBE_TAGS_BATCH):
        tags = doer.aws.json(
            [
                "elbv2",
                "describe-tags",
                "--resource-arns",
                *arns[i : i + DESCRIBE_TAGS_BATCH],
                "--region",
                ctx.region,
            ]
        ) or {}
        for desc in tags.get("TagDescriptions") or []:
            if any(
                t.get("Key") == LB_TAG and t.get("Value") == ctx.cluster_name
                for t in desc.get("Tags") or []
            ):
                count += 1
    return count


def cleanup_load_balancers(doer: Doer, outcome: PhaseOutcome) -> None:
    deleted = reap(doer, outcome, INGRESSES)
    deleted += reap(doer, outcome, LB_SERVICES)
    if not deleted:
        return

    t = doer.ctx.timeouts
    if doer.wait(
        "cluster load balancers",
        lambda: _cluster_load_balancers(doer),
        ceiling=t.lb_deregister,
        interval=t.lb_interval,
    ):
        outcome.ok("all cluster load balancers deregistered")
    else:
        outcome.warn("timeout waiting for load balancers; they may block VPC deletion")


def cleanup_storage(doer: Doer, outcome: PhaseOutcome) -> None:
    if not reap(doer, outcome, PVCS):
        return

    t = doer.ctx.timeouts
    if doer.wait(
        "persistent volumes",
        lambda: len(doer.kube.list("persistentvolumes")),
        ceiling=t.pv_release,
        interval=t.pv_interval,
    ):
        outcome.ok("all persistent volumes released")
    else:
        outcome.warn("some persistent volumes remain; volumes are revisited in orphan cleanup")
