"""Shared fixtures: fake collaborators, a Doer bound to them, and a CLI runner."""

import pytest

from graceful_destroy.cleanup_k8s import (
    APP_PROJECTS,
    APPLICATION_SETS,
    APPLICATIONS,
    NODE_CLAIMS,
    NODE_CLASSES,
    NODE_POOLS,
)
from graceful_destroy.doer import Doer
from graceful_destroy.main import main
from graceful_destroy.model import Ctx, PhaseOutcome, Summary

from fakes import FakeAws, FakeClock, FakeKubectl, FakeStackTool

ALL_CRDS = tuple(
    c.crd
    for c in (APPLICATION_SETS, APPLICATIONS, APP_PROJECTS, NODE_POOLS, NODE_CLASSES, NODE_CLAIMS)
)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def aws():
    return FakeAws()


@pytest.fixture
def kube(clock):
    return FakeKubectl(clock=clock, crds=ALL_CRDS)


@pytest.fixture
def stack_tool(aws):
    return FakeStackTool(aws)


@pytest.fixture
def make_doer(aws, kube, clock):
    def _make(*, kubectl=None, **overrides):
        fields = {"environment": "dev", "region": "us-west-2", "auto_approve": True}
        fields.update(overrides)
        return Doer(
            ctx=Ctx(**fields),
            aws=aws,
            kube=kubectl if kubectl is not None else kube,
            summary=Summary(),
            clock=clock.monotonic,
            sleep=clock.sleep,
        )

    return _make


@pytest.fixture
def outcome():
    return PhaseOutcome(name="test")


@pytest.fixture
def run_cli(aws, kube, stack_tool, clock, monkeypatch):
    for var in ("AWS_PAGER", "AWS_REGION", "AWS_DEFAULT_REGION"):
        monkeypatch.setenv(var, "")

    def _run(*args, prompt=None, environment="dev", fakes=None):
        a, k, s = fakes or (aws, kube, stack_tool)

        def _no_prompt(_msg):
            raise AssertionError("confirmation prompt was shown")

        return main(
            ["graceful-destroy", "--environment", environment, *args],
            aws=a,
            kube=k,
            stack_tool=s,
            prompt=prompt or _no_prompt,
            clock=clock.monotonic,
            sleep=clock.sleep,
        )

    return _run
