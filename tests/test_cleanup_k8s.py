from graceful_destroy.cleanup_k8s import (
    APPLICATIONS,
    NODE_POOLS,
    cleanup_argocd,
    cleanup_karpenter,
    cleanup_load_balancers,
    cleanup_storage,
    reap,
)
from graceful_destroy.model import PhaseOutcome

from fakes import FakeKubectl, err

TERMINATION = "karpenter.sh/termination"


def _verbs(kube):
    return [m[0] for m in kube.mutations]


def test_object_released_within_window_is_never_patched(make_doer, kube, outcome, clock):
    kube.add("nodepools", "default", finalizers=[TERMINATION], release_at=10.0)

    assert reap(make_doer(), outcome, NODE_POOLS) == 1

    assert _verbs(kube) == ["delete"]
    assert kube.names("nodepools") == []
    assert outcome.errors == []
    assert clock.sleeps == [5, 5]


def test_stuck_object_is_stripped_once_after_the_ceiling(make_doer, kube, outcome):
    kube.add("nodepools", "default", finalizers=[TERMINATION], stuck=True)

    reap(make_doer(), outcome, NODE_POOLS)

    assert _verbs(kube) == ["delete", "patch", "delete"]
    assert kube.patch_times == [30]
    assert len(outcome.errors) == 1
    assert "default" in outcome.errors[0].message


def test_stripping_finalizers_clears_the_object(make_doer, kube, outcome):
    kube.add("applications", "web", "argocd", finalizers=["resources-finalizer.argocd.argoproj.io"])

    reap(make_doer(), outcome, APPLICATIONS)

    assert kube.names("applications") == []
    assert outcome.errors == []
    patch = [m for m in kube.mutations if m[0] == "patch"][0]
    assert patch[-2:] == ["-n", "argocd"]


def test_missing_crd_skips_the_class(make_doer, kube, outcome):
    kube.crds.clear()
    kube.add("nodepools", "default")

    assert reap(make_doer(), outcome, NODE_POOLS) == 0
    assert kube.mutations == []
    assert outcome.records == []


def test_default_app_project_is_kept(make_doer, kube, outcome):
    kube.add("appprojects", "default", "argocd")
    kube.add("appprojects", "team-a", "argocd")

    cleanup_argocd(make_doer(), outcome)

    assert kube.names("appprojects") == ["default"]


def test_node_claims_wait_for_registered_nodes(make_doer, kube, outcome):
    kube.add("nodepools", "default")
    kube.add("nodeclaims", "default-x1")
    kube.add(
        "nodes",
        "ip-10-0-1-5",
        labels={"karpenter.sh/registered": "true"},
        owner=("nodeclaims", "default-x1"),
    )
    kube.add("nodes", "ip-10-0-9-9", labels={"eks.amazonaws.com/nodegroup": "system"})

    cleanup_karpenter(make_doer(), outcome)

    assert kube.names("nodeclaims") == []
    assert kube.names("nodes") == ["ip-10-0-9-9"]
    assert outcome.errors == []


def test_nodes_that_never_drain_are_an_error(make_doer, kube, outcome, clock):
    kube.add("nodes", "ip-10-0-1-5", labels={"karpenter.sh/registered": "true"})

    cleanup_karpenter(make_doer(), outcome)

    # no claim left to patch; the node is reported after the node ceiling
    assert "patch" not in _verbs(kube)
    assert sum(clock.sleeps) == 300 + 3
    assert "dependent object(s) still present" in outcome.errors[0].message


def test_only_load_balancer_services_are_deleted(make_doer, kube, outcome):
    kube.add("services", "ingress-nginx", "ingress-nginx", spec_type="LoadBalancer")
    kube.add("services", "api", "web", spec_type="ClusterIP")
    kube.add("ingresses", "web", "web")

    cleanup_load_balancers(make_doer(), outcome)

    assert kube.names("services") == ["api"]
    assert kube.names("ingresses") == []
    assert outcome.records == []
    assert not any("--field-selector" in c for c in kube.calls)


def test_lingering_cloud_load_balancer_is_a_warning(make_doer, kube, aws, outcome, clock):
    kube.add("services", "ingress-nginx", "ingress-nginx", spec_type="LoadBalancer")
    aws.add_tagged(
        "arn:aws:elasticloadbalancing:us-west-2:123456789012:loadbalancer/net/k8s/1",
        "elasticloadbalancing:loadbalancer",
        **{"elbv2.k8s.aws/cluster": "dev-eks"},
    )

    cleanup_load_balancers(make_doer(), outcome)

    assert outcome.errors == []
    assert len(outcome.warnings) == 1
    assert sum(clock.sleeps) == 120


def test_storage_waits_for_volumes_to_release(make_doer, kube, outcome):
    kube.add("persistentvolumeclaims", "data-0", "db")
    kube.add("persistentvolumes", "pv-1", owner=("persistentvolumeclaims", "data-0"))

    cleanup_storage(make_doer(), outcome)

    assert kube.names("persistentvolumes") == []
    assert outcome.records == []


def test_nothing_found_means_no_waiting(make_doer, outcome, clock):
    doer = make_doer()
    for phase in (cleanup_argocd, cleanup_karpenter, cleanup_load_balancers, cleanup_storage):
        phase(doer, outcome)
    assert clock.sleeps == []
    assert outcome.records == []


def test_dry_run_plans_without_touching_the_cluster(make_doer, kube):
    kube.add("nodepools", "default", finalizers=[TERMINATION], stuck=True)
    doer = make_doer(dry_run=True)
    outcome = PhaseOutcome(name="Karpenter Cleanup", dry_run=True)

    cleanup_karpenter(doer, outcome)

    assert kube.mutations == []
    assert outcome.errors == []
    assert {a.mode for a in doer.summary.actions} == {"dry-run"}


class ThrottledKubectl(FakeKubectl):
    """Fails every list of one kind, like an API server shedding load."""

    def __init__(self, kind, **kwargs):
        super().__init__(**kwargs)
        self.throttled = kind

    def run(self, args):
        if list(args)[:2] == ["get", self.throttled]:
            return err(
                "Error from server (TooManyRequests): the server has received too many requests",
                rc=1,
            )
        return super().run(args)


def test_failed_list_is_recorded_and_later_classes_still_run(make_doer, kube, clock, outcome):
    throttled = ThrottledKubectl("nodepools", clock=clock, crds=kube.crds)
    throttled.add("nodepools", "default")
    throttled.add("nodeclaims", "default-x1")

    cleanup_karpenter(make_doer(kubectl=throttled), outcome)

    assert throttled.names("nodeclaims") == []
    assert [m[:3] for m in throttled.mutations] == [["delete", "nodeclaims", "default-x1"]]
    assert len(outcome.errors) == 1
    assert outcome.errors[0].message.startswith("nodepools:")


def test_load_balancer_wait_reads_elbv2_and_ignores_other_clusters(make_doer, kube, aws, outcome, clock):
    kube.add("services", "ingress-nginx", "ingress-nginx", spec_type="LoadBalancer")
    for i in range(25):
        aws.add_tagged(
            f"arn:aws:elasticloadbalancing:us-west-2:123456789012:loadbalancer/net/other-{i}/1",
            "elasticloadbalancing:loadbalancer",
            **{"elbv2.k8s.aws/cluster": "staging-eks"},
        )

    cleanup_load_balancers(make_doer(), outcome)

    assert clock.sleeps == []
    assert outcome.records == []
    assert [c[1] for c in aws.calls] == ["describe-load-balancers", "describe-tags", "describe-tags"]
