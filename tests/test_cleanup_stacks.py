from graceful_destroy.awscli import CliResult
from graceful_destroy.cleanup_stacks import StackTool, default_stacks, destroy_stacks
from graceful_destroy.model import Ctx

from fakes import FakeStackTool


def _stack_names(tool):
    return [c[2] for c in tool.calls]


def test_stacks_are_destroyed_in_reverse_dependency_order(aws, stack_tool, make_doer, outcome):
    for stack in default_stacks("dev"):
        aws.stacks[stack] = "CREATE_COMPLETE"

    destroy_stacks(make_doer(), outcome, tool=stack_tool)

    assert _stack_names(stack_tool) == [
        "dev-argocd",
        "dev-karpenter",
        "dev-bootstrap",
        "dev-cluster",
        "dev-network",
    ]
    assert aws.stacks == {}
    assert outcome.records == []


def test_absent_stacks_are_not_destroyed_again(aws, stack_tool, make_doer, outcome):
    aws.stacks["dev-network"] = "CREATE_COMPLETE"
    aws.stacks["dev-cluster"] = "DELETE_COMPLETE"

    destroy_stacks(make_doer(), outcome, tool=stack_tool)

    assert _stack_names(stack_tool) == ["dev-network"]
    assert outcome.records == []


def test_delete_failed_stack_is_retried_retaining_blockers(aws, make_doer, outcome):
    aws.stacks["dev-network"] = "CREATE_COMPLETE"
    aws.stack_events["dev-network"] = [
        {"LogicalResourceId": "dev-network", "ResourceStatus": "DELETE_FAILED"},
        {"LogicalResourceId": "PrivateSubnet1", "ResourceStatus": "DELETE_FAILED"},
        {"LogicalResourceId": "PrivateSubnet1", "ResourceStatus": "DELETE_FAILED"},
        {"LogicalResourceId": "Vpc", "ResourceStatus": "DELETE_FAILED"},
        {"LogicalResourceId": "NatGateway", "ResourceStatus": "DELETE_COMPLETE"},
    ]
    tool = FakeStackTool(aws, failing={"dev-network"})

    destroy_stacks(make_doer(), outcome, tool=tool, stacks=["dev-network"])

    assert aws.retained["dev-network"] == ["PrivateSubnet1", "Vpc"]
    assert "dev-network" not in aws.stacks
    assert outcome.errors == []
    assert len(outcome.warnings) == 1
    assert "PrivateSubnet1, Vpc" in outcome.warnings[0].message


def test_unrecoverable_stack_is_an_error_and_later_stacks_still_run(aws, make_doer, outcome):
    aws.stacks["dev-cluster"] = "CREATE_COMPLETE"
    aws.stacks["dev-network"] = "CREATE_COMPLETE"
    tool = FakeStackTool(aws, failing={"dev-cluster"})

    destroy_stacks(make_doer(), outcome, tool=tool, stacks=["dev-cluster", "dev-network"])

    assert len(outcome.errors) == 1
    assert outcome.errors[0].message == "stack dev-cluster failed to delete (status: DELETE_FAILED)"
    assert "dev-network" not in aws.stacks


def test_missing_destroy_tool_is_not_mistaken_for_a_deleted_stack(aws, make_doer, outcome):
    class Missing(StackTool):
        def run(self, args):
            return CliResult(rc=127, stdout="", stderr="npx: command not found")

    aws.stacks["dev-network"] = "CREATE_COMPLETE"

    destroy_stacks(make_doer(), outcome, tool=Missing(), stacks=["dev-network"])

    assert len(outcome.errors) == 1
    assert "CREATE_COMPLETE" in outcome.errors[0].message


def test_skip_stack_destroy_touches_nothing(aws, stack_tool, make_doer, outcome):
    aws.stacks["dev-network"] = "CREATE_COMPLETE"

    destroy_stacks(make_doer(skip_stack_destroy=True), outcome, tool=stack_tool)

    assert stack_tool.calls == []
    assert aws.calls == []


def test_context_stack_list_overrides_defaults(aws, stack_tool, make_doer, outcome):
    aws.stacks["dev-extra"] = "CREATE_COMPLETE"
    aws.stacks["dev-network"] = "CREATE_COMPLETE"

    destroy_stacks(make_doer(stacks=("dev-extra",)), outcome, tool=stack_tool)

    assert _stack_names(stack_tool) == ["dev-extra"]


def test_default_destroy_command(monkeypatch):
    monkeypatch.delenv("GRACEFUL_DESTROY_STACK_CMD", raising=False)
    ctx = Ctx(environment="staging", region="eu-west-1")

    assert StackTool().destroy_args(ctx, "staging-network") == [
        "npx", "cdk", "destroy", "staging-network", "--force",
        "-c", "environment=staging", "-c", "region=eu-west-1",
    ]


def test_destroy_command_from_environment(monkeypatch):
    monkeypatch.setenv("GRACEFUL_DESTROY_STACK_CMD", "cdktf destroy {stack} --auto-approve")
    ctx = Ctx(environment="dev", region="us-west-2")

    assert StackTool().destroy_args(ctx, "dev-network") == [
        "cdktf", "destroy", "dev-network", "--auto-approve",
    ]
