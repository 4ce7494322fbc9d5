from graceful_destroy.cleanup_iam import cleanup_instance_profiles, discover_profiles

ROLE = "dev-eks-karpenter-node"


def test_profile_found_by_both_strategies_is_handled_once(aws, make_doer, outcome):
    aws.roles.add(ROLE)
    aws.instance_profiles["dev-eks_9876543210"] = [ROLE]

    refs = discover_profiles(make_doer(), outcome)
    assert [r.ident for r in refs] == ["dev-eks_9876543210"]
    assert refs[0].discovery == "list"

    cleanup_instance_profiles(make_doer(), outcome)

    assert aws.ops() == ["remove-role-from-instance-profile", "delete-instance-profile"]
    assert aws.instance_profiles == {}


def test_profile_named_after_the_role_is_only_detached(aws, make_doer, outcome):
    aws.roles.add(ROLE)
    aws.instance_profiles[ROLE] = [ROLE]

    cleanup_instance_profiles(make_doer(), outcome)

    assert aws.ops() == ["remove-role-from-instance-profile"]
    assert aws.instance_profiles == {ROLE: []}


def test_missing_role_still_sweeps_by_name_pattern(aws, make_doer, outcome):
    aws.instance_profiles["dev-eks-karpenter-abc"] = ["some-other-role"]
    aws.instance_profiles["staging-eks_1"] = []

    cleanup_instance_profiles(make_doer(), outcome)

    assert list(aws.instance_profiles) == ["staging-eks_1"]
    assert outcome.records == []


def test_delete_failure_is_a_warning(aws, make_doer, outcome):
    aws.instance_profiles["dev-eks_1"] = []
    aws.failures["delete-instance-profile"] = "An error occurred (AccessDenied)"

    cleanup_instance_profiles(make_doer(), outcome)

    assert outcome.errors == []
    assert [w.message for w in outcome.warnings] == ["failed to delete instance profile dev-eks_1"]


def test_nothing_to_do(aws, make_doer, outcome):
    cleanup_instance_profiles(make_doer(), outcome)

    assert aws.mutations == []
    assert outcome.records == []
