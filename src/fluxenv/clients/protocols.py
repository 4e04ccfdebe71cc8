"""
Contracts for the external systems an environment is built from.

The orchestrator depends only on these; the concrete Gitea, kind, kubectl and
Flux adapters live beside this module.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

from fluxenv.models import NamespacedName, ReconciliationUnit

if TYPE_CHECKING:
    from fluxenv.clients.flux import BootstrapOptions, GitSourceTarget
    from fluxenv.clients.gitea import RepoOptions


class AuthenticatedGitHosting(Protocol):
    """Git-hosting operations that need admin credentials."""

    async def generate_key_pair(self, name: str, out_path: str) -> int:
        ...

    async def seed_repository(self, repo: RepoOptions, local_path: str) -> None:
        ...


class GitHostingClient(Protocol):
    """Git-hosting lifecycle; authenticated operations require ``signup`` first."""

    async def start_instance(self, container_name: str) -> str:
        ...

    async def signup(
        self, container_name: str, username: str, password: str, email: str
    ) -> AuthenticatedGitHosting:
        ...

    async def stop_instance(self, container_name: str) -> None:
        ...


class ClusterLifecycleClient(Protocol):
    async def create_cluster(self, name: str, config_path: str) -> None:
        ...

    async def delete_cluster(self, name: str) -> None:
        ...

    async def load_image(self, image: str, cluster_name: str) -> bool:
        ...


class ManifestApplier(Protocol):
    async def apply(self, *manifest_paths: str) -> None:
        ...


class GitOpsClient(Protocol):
    async def bootstrap(self, opts: BootstrapOptions) -> None:
        ...

    async def reconcile_unit(self, identity: NamespacedName) -> None:
        ...

    async def list_units(self) -> list[ReconciliationUnit]:
        ...

    async def wait_ready(self, *identities: NamespacedName, timeout: float | None = None) -> None:
        ...

    async def sync_git_sources(self, target: GitSourceTarget, *, interval: float = 2.0) -> None:
        ...
