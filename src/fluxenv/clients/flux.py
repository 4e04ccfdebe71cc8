"""
Flux adapter.

Bootstrap and per-unit reconciliation go through the ``flux`` CLI; listing
Kustomizations, readiness checks and GitRepository patches go through the
Kubernetes API.

Configuration:
    kubeconfig: Path to kubeconfig file (optional, defaults to KUBECONFIG / ~/.kube/config)
    context: Kubeconfig context to use (optional)
    poll_interval: Seconds between readiness checks
"""

from __future__ import annotations

import asyncio
import posixpath
from dataclasses import dataclass
from functools import partial
from typing import Any

import structlog
from kubernetes import client, config
from kubernetes.client.rest import ApiException

from fluxenv.core.errors import ProviderError, ResourceNotFoundError
from fluxenv.models import NamespacedName, ReconciliationUnit
from fluxenv.readiness import DEFAULT_POLL_INTERVAL, ReadinessPoller
from fluxenv.shell import run_command, run_until_marker

logger = structlog.get_logger()

KUSTOMIZE_GROUP = "kustomize.toolkit.fluxcd.io"
KUSTOMIZE_VERSION = "v1"
KUSTOMIZATIONS = "kustomizations"

SOURCE_GROUP = "source.toolkit.fluxcd.io"
SOURCE_VERSION = "v1"
GIT_REPOSITORIES = "gitrepositories"

READY_CONDITION = "Ready"
BOOTSTRAP_MARKER = "reconciled sync configuration"


class FluxError(ProviderError):
    """Raised when the Kubernetes API cannot be reached or used."""


@dataclass(frozen=True)
class BootstrapOptions:
    """Inputs for ``flux bootstrap git``."""

    # host:port/owner/repo.git, used by the CLI over SSH
    url: str
    private_key_path: str
    path: str
    username: str
    password: str
    branch: str = "main"

    def to_args(self, binary: str = "flux") -> list[str]:
        return [
            binary,
            "bootstrap",
            "git",
            f"--url=ssh://git@{self.url}",
            f"--branch={self.branch}",
            f"--private-key-file={self.private_key_path}",
            f"--path={self.path}",
            f"--password={self.password}",
            f"--username={self.username}",
            "--token-auth=true",
        ]


@dataclass(frozen=True)
class GitSourceTarget:
    """Where in-cluster GitRepository objects should point."""

    address: str
    http_port: int
    username: str
    branch: str = "main"

    def url_for(self, current_url: str) -> str:
        repo_name = posixpath.basename(current_url.rstrip("/"))
        return f"http://{self.address}:{self.http_port}/{self.username}/{repo_name}"

    def points_here(self, url: str) -> bool:
        return self.address in url


def is_condition_true(conditions: list[dict[str, Any]] | None, condition_type: str) -> bool:
    """Whether the named status condition is present and ``True``."""
    for condition in conditions or []:
        if condition.get("type") == condition_type:
            return condition.get("status") == "True"
    return False


class FluxClient:
    """Drives Flux in the ephemeral cluster."""

    def __init__(
        self,
        *,
        binary: str = "flux",
        kubeconfig: str | None = None,
        context: str | None = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        marker: str = BOOTSTRAP_MARKER,
        timeout: float = 30.0,
    ) -> None:
        self._binary = binary
        self._kubeconfig = kubeconfig
        self._context = context
        self._marker = marker
        self._timeout = timeout
        self._api_client: Any = None
        self.poller = ReadinessPoller(self.is_ready, interval=poll_interval)

    def _ensure_initialized(self) -> None:
        """Load kubeconfig lazily; the cluster does not exist at construction time."""
        if self._api_client is not None:
            return
        try:
            api_client = config.new_client_from_config(
                config_file=self._kubeconfig, context=self._context
            )
        except config.ConfigException as e:
            raise FluxError(f"Failed to load Kubernetes config: {e}") from e
        self._api_client = api_client

    def _custom_objects(self) -> Any:
        self._ensure_initialized()
        return client.CustomObjectsApi(self._api_client)

    async def _run_sync(self, func: Any, *args: Any, **kwargs: Any) -> Any:
        """Run synchronous kubernetes API call in a worker thread."""
        return await asyncio.to_thread(partial(func, *args, **kwargs))

    async def bootstrap(self, opts: BootstrapOptions) -> None:
        """
        Run ``flux bootstrap git`` until the sync configuration is reconciled.

        The CLI keeps waiting on the cluster after printing the marker; it is
        stopped at that point rather than left to time out.
        """
        logger.info("flux_bootstrap_started", url=opts.url, path=opts.path)
        result = await run_until_marker(opts.to_args(self._binary), self._marker)
        logger.info("flux_bootstrap_finished", stopped_at_marker=result.stopped_at_marker)

    async def reconcile_unit(self, identity: NamespacedName) -> None:
        await run_command(
            [self._binary, "reconcile", "ks", identity.name, "-n", identity.namespace]
        )
        logger.info("unit_reconciled", name=identity.name, namespace=identity.namespace)

    async def list_units(self) -> list[ReconciliationUnit]:
        """List every Kustomization in the cluster."""
        api = self._custom_objects()
        try:
            response = await self._run_sync(
                api.list_cluster_custom_object,
                KUSTOMIZE_GROUP,
                KUSTOMIZE_VERSION,
                KUSTOMIZATIONS,
                _request_timeout=self._timeout,
            )
        except ApiException as e:
            raise FluxError(f"Failed to list kustomizations: {e.reason}") from e
        return [ReconciliationUnit.from_object(item) for item in response.get("items", [])]

    async def is_ready(self, identity: NamespacedName) -> bool:
        """
        Whether the Kustomization's Ready condition is True.

        Raises:
            ResourceNotFoundError: If the Kustomization does not exist (yet)
        """
        api = self._custom_objects()
        try:
            obj = await self._run_sync(
                api.get_namespaced_custom_object,
                KUSTOMIZE_GROUP,
                KUSTOMIZE_VERSION,
                identity.namespace,
                KUSTOMIZATIONS,
                identity.name,
                _request_timeout=self._timeout,
            )
        except ApiException as e:
            if e.status == 404:
                raise ResourceNotFoundError(identity) from e
            raise FluxError(f"Failed to get kustomization {identity}: {e.reason}") from e
        return is_condition_true((obj.get("status") or {}).get("conditions"), READY_CONDITION)

    async def wait_ready(self, *identities: NamespacedName, timeout: float | None = None) -> None:
        await self.poller.wait_ready(*identities, timeout=timeout)

    async def sync_git_sources_once(self, target: GitSourceTarget) -> list[NamespacedName]:
        """Point every GitRepository at ``target``; returns the ones patched."""
        api = self._custom_objects()
        response = await self._run_sync(
            api.list_cluster_custom_object,
            SOURCE_GROUP,
            SOURCE_VERSION,
            GIT_REPOSITORIES,
            _request_timeout=self._timeout,
        )

        patched: list[NamespacedName] = []
        for repo in response.get("items", []):
            url = (repo.get("spec") or {}).get("url", "")
            if target.points_here(url):
                continue

            metadata = repo["metadata"]
            identity = NamespacedName(metadata["namespace"], metadata["name"])
            new_url = target.url_for(url)
            body = {"spec": {"url": new_url, "ref": {"branch": target.branch}}}
            await self._run_sync(
                api.patch_namespaced_custom_object,
                SOURCE_GROUP,
                SOURCE_VERSION,
                identity.namespace,
                GIT_REPOSITORIES,
                identity.name,
                body,
                _request_timeout=self._timeout,
            )
            logger.info("git_source_repointed", source=str(identity), url=new_url)
            patched.append(identity)

        return patched

    async def sync_git_sources(self, target: GitSourceTarget, *, interval: float = 2.0) -> None:
        """Keep GitRepository objects pointed at ``target`` until cancelled.

        Failures are logged and retried on the next pass; the Flux CRDs may
        not be installed yet when this starts.
        """
        while True:
            try:
                await self.sync_git_sources_once(target)
            except ApiException as e:
                logger.debug("git_source_sync_pending", status=e.status, reason=e.reason)
            except Exception as e:
                logger.warning("git_source_sync_failed", error=str(e))
            await asyncio.sleep(interval)
