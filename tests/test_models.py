"""Tests for provisioning data models."""

import pytest
from fluxenv.core.errors import RequestValidationError
from fluxenv.models import (
    NamespacedName,
    ProvisioningRequest,
    ReadinessResult,
    ReadinessStatus,
    ReconciliationUnit,
    TeardownRequest,
    random_container_name,
)


def valid_request(**kwargs):
    values = {
        "local_repo_paths": ("/src/k8s-infra",),
        "bootstrap_repo": "k8s-infra",
        "bootstrap_path": "flux/clusters/dev",
        "cluster_config_path": "/src/k8s-infra/kind.yaml",
    }
    values.update(kwargs)
    return ProvisioningRequest(**values)


class TestNamespacedName:
    def test_parse(self):
        assert NamespacedName.parse("flux-system/apps") == NamespacedName("flux-system", "apps")

    def test_parse_strips_whitespace(self):
        assert NamespacedName.parse(" ns/name ") == NamespacedName("ns", "name")

    @pytest.mark.parametrize("value", ["apps", "a/b/c", "/apps", "ns/", ""])
    def test_parse_rejects_malformed(self, value):
        with pytest.raises(ValueError):
            NamespacedName.parse(value)

    def test_str(self):
        assert str(NamespacedName("flux-system", "apps")) == "flux-system/apps"

    def test_hashable(self):
        assert len({NamespacedName("a", "b"), NamespacedName("a", "b")}) == 1


class TestReconciliationUnit:
    def test_from_object(self):
        obj = {
            "metadata": {"name": "apps", "namespace": "flux-system"},
            "spec": {
                "dependsOn": [
                    {"name": "configs"},
                    {"name": "shared", "namespace": "platform"},
                ]
            },
        }

        unit = ReconciliationUnit.from_object(obj)

        assert unit.identity == NamespacedName("flux-system", "apps")
        assert unit.depends_on == (
            NamespacedName("flux-system", "configs"),
            NamespacedName("platform", "shared"),
        )

    def test_from_object_without_dependencies(self):
        obj = {"metadata": {"name": "infra", "namespace": "flux-system"}, "spec": {}}

        assert ReconciliationUnit.from_object(obj).depends_on == ()


class TestReadinessResult:
    def test_ready(self):
        result = ReadinessResult(NamespacedName("a", "b"), ReadinessStatus.READY)

        assert result.ready
        assert result.error is None

    def test_not_ready(self):
        result = ReadinessResult(
            NamespacedName("a", "b"), ReadinessStatus.CANCELLED, TimeoutError("late")
        )

        assert not result.ready


class TestProvisioningRequestValidate:
    def test_applies_defaults(self):
        request = valid_request().validate()

        assert request.git_http_port == 3000
        assert request.git_ssh_port == 2222
        assert request.git_username == "labuser"
        assert request.git_password == "adminlabuser"
        assert request.git_email == "labuser@gmail.com"
        assert request.private_key_path == "/tmp/gitea-key.pem"
        assert request.cluster_name == "integration"
        assert request.branch == "main"
        assert request.git_container_name.startswith("gitea-")

    def test_keeps_explicit_values(self):
        request = valid_request(
            git_http_port=3001,
            git_username="dev",
            git_container_name="gitea-mine",
            cluster_name="ci",
            private_key_path="/keys/flux.pem",
        ).validate()

        assert request.git_http_port == 3001
        assert request.git_username == "dev"
        assert request.git_container_name == "gitea-mine"
        assert request.cluster_name == "ci"
        assert request.private_key_path == "/keys/flux.pem"

    def test_validate_is_idempotent(self):
        request = valid_request().validate()

        assert request.validate() == request

    def test_does_not_modify_original(self):
        original = valid_request()

        original.validate()

        assert original.git_http_port == 0

    @pytest.mark.parametrize(
        "overrides, field",
        [
            ({"local_repo_paths": ()}, "local_repo_paths"),
            ({"bootstrap_repo": ""}, "bootstrap_repo"),
            ({"bootstrap_repo": "other-repo"}, "bootstrap_repo"),
            ({"bootstrap_path": ""}, "bootstrap_path"),
            ({"cluster_config_path": ""}, "cluster_config_path"),
            ({"private_key_path": "/tmp/key.rsa"}, "private_key_path"),
        ],
    )
    def test_rejects_invalid(self, overrides, field):
        with pytest.raises(RequestValidationError) as exc_info:
            valid_request(**overrides).validate()

        assert exc_info.value.field == field

    def test_bootstrap_repo_name(self):
        request = valid_request(
            local_repo_paths=("/src/org/k8s-infra",), bootstrap_repo="org/k8s-infra"
        )

        assert request.bootstrap_repo_name == "k8s-infra"


def test_random_container_name():
    name = random_container_name()

    assert name.startswith("gitea-")
    assert len(name) == len("gitea-") + 4
    assert name[6:].islower()


def test_teardown_defaults():
    request = TeardownRequest()

    assert request.cluster_name == "integration"
    assert request.container_name == "gitea"
