"""
Data models for provisioning runs.

A ``ProvisioningRequest`` is validated once at entry (``validate()`` returns a
copy with defaults applied). ``ReconciliationUnit`` objects are read from the
live cluster and are never owned by the orchestrator.
"""

from __future__ import annotations

import random
import string
from dataclasses import dataclass, replace
from enum import Enum
from pathlib import PurePath
from typing import Any

from fluxenv.core.errors import RequestValidationError

DEFAULT_HTTP_PORT = 3000
DEFAULT_SSH_PORT = 2222
DEFAULT_USERNAME = "labuser"
DEFAULT_PASSWORD = "adminlabuser"
DEFAULT_GIT_ADDRESS = "http://localhost"
DEFAULT_PRIVATE_KEY_PATH = "/tmp/gitea-key.pem"
DEFAULT_CLUSTER_NAME = "integration"
DEFAULT_BRANCH = "main"


@dataclass(frozen=True, order=True)
class NamespacedName:
    """Identity of a namespaced cluster object."""

    namespace: str
    name: str

    @classmethod
    def parse(cls, value: str) -> NamespacedName:
        """Parse ``namespace/name``."""
        parts = value.strip().split("/")
        if len(parts) != 2 or not all(parts):
            raise ValueError(f"invalid namespaced name {value!r}, expected namespace/name")
        return cls(namespace=parts[0], name=parts[1])

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclass(frozen=True)
class ReconciliationUnit:
    """A Flux Kustomization and the units it depends on."""

    namespace: str
    name: str
    depends_on: tuple[NamespacedName, ...] = ()

    @property
    def identity(self) -> NamespacedName:
        return NamespacedName(self.namespace, self.name)

    @classmethod
    def from_object(cls, obj: dict[str, Any]) -> ReconciliationUnit:
        """Build a unit from a Kustomization object as returned by the API."""
        metadata = obj.get("metadata", {})
        namespace = metadata.get("namespace", "")
        deps = []
        for ref in (obj.get("spec") or {}).get("dependsOn") or []:
            deps.append(NamespacedName(ref.get("namespace") or namespace, ref["name"]))
        return cls(namespace=namespace, name=metadata["name"], depends_on=tuple(deps))


class ReadinessStatus(Enum):
    """Terminal outcome of a readiness poll."""

    READY = "ready"
    ERROR = "error"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class ReadinessResult:
    """Outcome of waiting for one resource."""

    resource: NamespacedName
    status: ReadinessStatus
    error: BaseException | None = None

    @property
    def ready(self) -> bool:
        return self.status is ReadinessStatus.READY


def random_container_name() -> str:
    suffix = "".join(random.choices(string.ascii_lowercase, k=4))
    return f"gitea-{suffix}"


@dataclass(frozen=True)
class ProvisioningRequest:
    """Everything needed for one provisioning run."""

    # Git hosting
    local_repo_paths: tuple[str, ...] = ()
    bootstrap_repo: str = ""
    git_http_port: int = 0
    git_ssh_port: int = 0
    git_username: str = ""
    git_password: str = ""
    git_address: str = DEFAULT_GIT_ADDRESS
    git_container_name: str = ""
    private_key_path: str = ""

    # Cluster
    cluster_name: str = ""
    cluster_config_path: str = ""
    images_to_load: tuple[str, ...] = ()
    manifests_to_apply: tuple[str, ...] = ()

    # GitOps
    bootstrap_path: str = ""
    branch: str = DEFAULT_BRANCH
    units_to_wait_for: tuple[NamespacedName, ...] = ()

    @property
    def git_email(self) -> str:
        return f"{self.git_username}@gmail.com"

    @property
    def bootstrap_repo_name(self) -> str:
        return PurePath(self.bootstrap_repo).name

    def validate(self) -> ProvisioningRequest:
        """Return a copy with defaults applied, or raise on unusable input.

        Raises:
            RequestValidationError: naming the offending field
        """
        if not self.local_repo_paths:
            raise RequestValidationError("local_repo_paths", "local repo path is required")

        if not self.bootstrap_repo:
            raise RequestValidationError("bootstrap_repo", "flux bootstrap repo is required")

        if not any(self.bootstrap_repo in path for path in self.local_repo_paths):
            raise RequestValidationError(
                "bootstrap_repo", "flux bootstrap repo must be in the local repos"
            )

        if not self.bootstrap_path:
            raise RequestValidationError("bootstrap_path", "flux bootstrap path is required")

        if not self.cluster_config_path:
            raise RequestValidationError("cluster_config_path", "kind config path is required")

        private_key_path = self.private_key_path or DEFAULT_PRIVATE_KEY_PATH
        if PurePath(private_key_path).suffix != ".pem":
            raise RequestValidationError(
                "private_key_path", "private key path must be with pem extension"
            )

        return replace(
            self,
            local_repo_paths=tuple(self.local_repo_paths),
            git_http_port=self.git_http_port or DEFAULT_HTTP_PORT,
            git_ssh_port=self.git_ssh_port or DEFAULT_SSH_PORT,
            git_username=self.git_username or DEFAULT_USERNAME,
            git_password=self.git_password or DEFAULT_PASSWORD,
            git_address=(self.git_address or DEFAULT_GIT_ADDRESS).rstrip("/"),
            git_container_name=self.git_container_name or random_container_name(),
            private_key_path=private_key_path,
            cluster_name=self.cluster_name or DEFAULT_CLUSTER_NAME,
            branch=self.branch or DEFAULT_BRANCH,
            images_to_load=tuple(self.images_to_load),
            manifests_to_apply=tuple(self.manifests_to_apply),
            units_to_wait_for=tuple(self.units_to_wait_for),
        )


@dataclass(frozen=True)
class TeardownRequest:
    """Names of the resources a standalone teardown removes."""

    cluster_name: str = DEFAULT_CLUSTER_NAME
    container_name: str = "gitea"
