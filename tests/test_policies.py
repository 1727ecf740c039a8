from jamf_package_updater.errors import ScanDegraded
from jamf_package_updater.models import MatchKind, PolicyReference
from jamf_package_updater.policies import matchPolicy, policyPackages, scanPolicies

from conftest import fatal, policyWith, retryable


def test_scan_returns_only_the_policy_deploying_the_file(makeClient):
    client = makeClient(
        policies=[(1, "P1"), (2, "P2")],
        policyDetails={1: policyWith("App.pkg"), 2: policyWith("Other.pkg")},
    )

    result = scanPolicies(client, "App", "App.pkg")

    assert result.references == [PolicyReference(1, "P1", MatchKind.FILENAME)]
    assert not result.degraded
    assert result.warning() is None


def test_scan_matches_display_name(makeClient):
    client = makeClient(
        policies=[(7, "Install App")],
        policyDetails={7: policyWith("Helper.pkg", "App")},
    )

    result = scanPolicies(client, "App", "App-2.2.0.pkg")

    assert result.references == [PolicyReference(7, "Install App", MatchKind.NAME)]


def test_scan_preserves_policy_order(makeClient):
    client = makeClient(
        policies=[(3, "C"), (1, "A"), (2, "B")],
        policyDetails={1: policyWith("App.pkg"), 2: policyWith("App"), 3: policyWith("App.pkg")},
    )

    result = scanPolicies(client, "App", "App.pkg")

    assert [r.policyId for r in result.references] == [3, 1, 2]


def test_matching_is_exact_and_case_sensitive():
    assert matchPolicy(policyWith("app.pkg"), "App", "App.pkg") is None
    assert matchPolicy(policyWith("App.pkg.old"), "App", "App.pkg") is None
    assert matchPolicy(policyWith("App.pkg"), "App", "App.pkg") is MatchKind.FILENAME


def test_text_outside_package_configuration_is_ignored():
    policy = {
        "general": {"name": "Deploys App.pkg"},
        "self_service": {"self_service_description": "Installs App.pkg"},
        "package_configuration": {"packages": []},
    }

    assert matchPolicy(policy, "App", "App.pkg") is None


def test_single_package_object_shapes_are_flattened():
    assert policyPackages({"package_configuration": {"packages": {"package": {"name": "App.pkg"}}}}) == [
        {"name": "App.pkg"}
    ]
    assert policyPackages({"package_configuration": {"packages": [{"package": {"name": "App.pkg"}}]}}) == [
        {"name": "App.pkg"}
    ]
    assert policyPackages({}) == []


def test_unscannable_policy_does_not_stop_the_scan(makeClient):
    client = makeClient(
        policies=[(1, "Broken"), (2, "Uses App")],
        policyDetails={1: retryable(), 2: policyWith("App.pkg")},
    )

    result = scanPolicies(client, "App", "App.pkg")

    assert result.references == [PolicyReference(2, "Uses App", MatchKind.FILENAME)]
    assert [p.policyId for p in result.unscannable] == [1]
    assert result.degraded
    warning = result.warning()
    assert isinstance(warning, ScanDegraded)
    assert "Broken (ID: 1)" in str(warning)


def test_listing_failure_yields_degraded_empty_result(makeClient):
    client = makeClient(listError=fatal("HTTP 403: Forbidden"))

    result = scanPolicies(client, "App", "App.pkg")

    assert result.references == []
    assert result.degraded
    assert "403" in result.listingError
    assert client.callNames == ["listPolicies"]
