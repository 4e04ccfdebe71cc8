"""
Environment orchestrator.

Brings up a Gitea instance and a kind cluster side by side, bootstraps Flux
from the Gitea repository, reconciles Kustomizations in dependency order and
waits for the ones the caller asked for. Every created resource is recorded in
a rollback chain; the returned (or raised) handle tears all of it down.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from pathlib import PurePath
from typing import Any, AsyncIterator, Callable, Coroutine

import structlog

from fluxenv.clients.flux import BootstrapOptions, FluxClient, GitSourceTarget
from fluxenv.clients.gitea import GiteaClient, RepoOptions
from fluxenv.clients.kind import KindClient
from fluxenv.clients.kubectl import KubectlApplier
from fluxenv.clients.protocols import (
    ClusterLifecycleClient,
    GitHostingClient,
    GitOpsClient,
    ManifestApplier,
)
from fluxenv.config.settings import Settings
from fluxenv.core.errors import (
    BootstrapError,
    ReadinessWaitError,
    ReconciliationError,
    ResourceExistsError,
    RollbackError,
    SetupError,
    SubsystemError,
    join_errors,
)
from fluxenv.dependencies import order_units
from fluxenv.logging import bind_context
from fluxenv.models import (
    DEFAULT_GIT_ADDRESS,
    DEFAULT_HTTP_PORT,
    DEFAULT_SSH_PORT,
    NamespacedName,
    ProvisioningRequest,
    TeardownRequest,
)
from fluxenv.network import outbound_address
from fluxenv.rollback import RollbackChain, RollbackHandle

logger = structlog.get_logger()

BOOTSTRAP_UNIT = NamespacedName("flux-system", "flux-system")
KEY_TITLE = "fluxenv"


class EnvironmentOrchestrator:
    """Provisions and tears down Gitea + kind + Flux environments."""

    def __init__(
        self,
        git: GitHostingClient,
        cluster: ClusterLifecycleClient,
        gitops: GitOpsClient,
        applier: ManifestApplier,
        *,
        address_resolver: Callable[[], str] = outbound_address,
        bootstrap_unit: NamespacedName = BOOTSTRAP_UNIT,
        readiness_timeout: float | None = None,
        sync_interval: float = 2.0,
    ) -> None:
        self._git = git
        self._cluster = cluster
        self._gitops = gitops
        self._applier = applier
        self._address_resolver = address_resolver
        self._bootstrap_unit = bootstrap_unit
        self._readiness_timeout = readiness_timeout
        self._sync_interval = sync_interval
        self._background: set[asyncio.Task[Any]] = set()

        # Units whose reconciliation failed during the last run, with the error
        self.skipped_units: dict[NamespacedName, str] = {}

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        http_port: int = DEFAULT_HTTP_PORT,
        ssh_port: int = DEFAULT_SSH_PORT,
        git_address: str = DEFAULT_GIT_ADDRESS,
    ) -> EnvironmentOrchestrator:
        """Wire the Gitea, kind, kubectl and Flux adapters from settings."""
        git = GiteaClient(
            git_address,
            http_port,
            ssh_port,
            image=settings.gitea_image,
            timeout=settings.http_timeout,
            startup_timeout=settings.gitea_startup_timeout,
        )
        gitops = FluxClient(
            kubeconfig=settings.kubeconfig,
            context=settings.kube_context,
            poll_interval=settings.poll_interval,
            marker=settings.bootstrap_marker,
            timeout=settings.http_timeout,
        )
        return cls(
            git,
            KindClient(),
            gitops,
            KubectlApplier(context=settings.kube_context),
            bootstrap_unit=NamespacedName(settings.bootstrap_namespace, settings.bootstrap_name),
            readiness_timeout=settings.readiness_timeout,
            sync_interval=settings.poll_interval,
        )

    async def __aenter__(self) -> EnvironmentOrchestrator:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    # === Background tasks ===

    def _spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro, name=name)
        self._background.add(task)
        task.add_done_callback(self._on_background_done)
        return task

    def _on_background_done(self, task: asyncio.Task[Any]) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("background_task_failed", task=task.get_name(), error=str(exc))

    @property
    def background_tasks(self) -> frozenset[asyncio.Task[Any]]:
        return frozenset(self._background)

    async def aclose(self) -> None:
        """Cancel background tasks and wait for them to finish."""
        tasks = list(self._background)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._background.difference_update(tasks)

    # === Provisioning ===

    async def provision(
        self, request: ProvisioningRequest, *, chain: RollbackChain | None = None
    ) -> RollbackHandle:
        """
        Provision a complete environment.

        Args:
            request: What to create; validated before anything is created
            chain: Rollback chain to record compensating actions in. Pass one
                to keep teardown reachable if this call is cancelled.

        Returns:
            Handle that tears down everything that was created

        Raises:
            RequestValidationError: If the request is unusable (nothing created)
            ProvisioningError: If any later step failed; ``.rollback`` tears
                down whatever was created before the failure
        """
        request = request.validate()
        chain = chain if chain is not None else RollbackChain()

        with bind_context(cluster=request.cluster_name, container=request.git_container_name):
            logger.info("provisioning_started")
            try:
                await self._provision(request, chain)
            except BaseException:
                await self.aclose()
                raise
            logger.info("provisioning_finished", skipped_units=len(self.skipped_units))

        return chain.handle()

    async def _provision(self, request: ProvisioningRequest, chain: RollbackChain) -> None:
        await self.start_subsystems(request, chain)

        try:
            address = await asyncio.to_thread(self._address_resolver)
        except OSError as exc:
            raise BootstrapError("failed to determine outbound address", chain.handle(), exc) from exc

        await self.bootstrap(request, address, chain)
        await self.reconcile_units(chain)

        if request.units_to_wait_for:
            logger.info("waiting_for_units", units=[str(u) for u in request.units_to_wait_for])
            try:
                await self._gitops.wait_ready(
                    *request.units_to_wait_for, timeout=self._readiness_timeout
                )
            except Exception as exc:
                raise ReadinessWaitError(
                    "failed to wait for kustomizations", chain.handle(), exc
                ) from exc
            logger.info("units_ready", units=[str(u) for u in request.units_to_wait_for])

    async def start_subsystems(self, request: ProvisioningRequest, chain: RollbackChain) -> None:
        """
        Set up git hosting and the cluster concurrently.

        Both paths always run to completion and both record a compensating
        action; their errors are combined.

        Raises:
            SetupError: If either side failed
        """
        results = await asyncio.gather(
            self._setup_git_hosting(request, chain),
            self._setup_cluster(request, chain),
            return_exceptions=True,
        )

        for result in results:
            if isinstance(result, BaseException) and not isinstance(result, Exception):
                raise result

        error = join_errors(*(r for r in results if isinstance(r, Exception)))
        if error is not None:
            raise SetupError("failed to start environment", chain.handle(), error) from error

    async def _setup_git_hosting(self, request: ProvisioningRequest, chain: RollbackChain) -> None:
        container = request.git_container_name
        taken = False

        async def remove_container() -> None:
            if taken:
                logger.info("rollback_skipped_existing_container", container=container)
                return
            await self._git.stop_instance(container)

        # the container may exist even if startup fails part way
        chain.add(remove_container, f"remove git hosting container {container}")

        try:
            try:
                await self._git.start_instance(container)
            except ResourceExistsError:
                taken = True
                raise
            admin = await self._git.signup(
                container, request.git_username, request.git_password, request.git_email
            )
            await admin.generate_key_pair(KEY_TITLE, request.private_key_path)

            results = await asyncio.gather(
                *(
                    admin.seed_repository(RepoOptions(name=PurePath(path).name), path)
                    for path in request.local_repo_paths
                ),
                return_exceptions=True,
            )
            error = join_errors(*(r for r in results if isinstance(r, Exception)))
            if error is not None:
                raise error
        except Exception as exc:
            raise SubsystemError("git hosting", exc) from exc

        logger.info("git_hosting_ready", repos=len(request.local_repo_paths))

    async def _setup_cluster(self, request: ProvisioningRequest, chain: RollbackChain) -> None:
        name = request.cluster_name
        taken = False

        async def delete_cluster() -> None:
            if taken:
                logger.info("rollback_skipped_existing_cluster", cluster=name)
                return
            await self._cluster.delete_cluster(name)

        chain.add(delete_cluster, f"delete cluster {name}")

        try:
            try:
                await self._cluster.create_cluster(name, request.cluster_config_path)
            except ResourceExistsError:
                taken = True
                raise

            if request.manifests_to_apply:
                await self._applier.apply(*request.manifests_to_apply)

            for image in request.images_to_load:
                await self._cluster.load_image(image, name)
        except Exception as exc:
            raise SubsystemError("cluster", exc) from exc

        logger.info("cluster_ready", manifests=len(request.manifests_to_apply))

    async def bootstrap(
        self, request: ProvisioningRequest, address: str, chain: RollbackChain
    ) -> None:
        """
        Bootstrap Flux from the seeded repository.

        The CLI talks to Gitea through the published SSH port on localhost,
        while the in-cluster controllers must use this machine's address. A
        background task keeps the cluster's GitRepository objects pointed at
        that address for the rest of the run.

        Raises:
            BootstrapError: If the bootstrap command or the initial sync failed
        """
        repo = request.bootstrap_repo_name
        opts = BootstrapOptions(
            url=f"localhost:{request.git_ssh_port}/{request.git_username}/{repo}.git",
            private_key_path=request.private_key_path,
            path=request.bootstrap_path,
            username=request.git_username,
            password=request.git_password,
            branch=request.branch,
        )
        target = GitSourceTarget(
            address=address,
            http_port=request.git_http_port,
            username=request.git_username,
            branch=request.branch,
        )

        self._spawn(
            self._gitops.sync_git_sources(target, interval=self._sync_interval),
            name="git-source-sync",
        )

        try:
            await self._gitops.bootstrap(opts)
            logger.info("waiting_for_bootstrap_unit", unit=str(self._bootstrap_unit))
            await self._gitops.wait_ready(self._bootstrap_unit, timeout=self._readiness_timeout)
        except Exception as exc:
            raise BootstrapError("failed to bootstrap", chain.handle(), exc) from exc

    async def reconcile_units(self, chain: RollbackChain) -> list[NamespacedName]:
        """
        Reconcile every unit in dependency order, one at a time.

        A unit that fails to reconcile is logged and skipped; the units after
        it are still attempted.

        Returns:
            The order units were reconciled in

        Raises:
            ReconciliationError: If units could not be listed or ordered
        """
        try:
            units = await self._gitops.list_units()
            order = order_units(units)
        except Exception as exc:
            raise ReconciliationError(
                "failed to order kustomizations by deps", chain.handle(), exc
            ) from exc

        self.skipped_units = {}
        for identity in order:
            try:
                await self._gitops.reconcile_unit(identity)
            except Exception as exc:
                logger.warning(
                    "unit_reconcile_skipped",
                    name=identity.name,
                    namespace=identity.namespace,
                    error=str(exc),
                )
                self.skipped_units[identity] = str(exc)

        return order

    # === Teardown ===

    async def teardown(self, request: TeardownRequest) -> None:
        """
        Delete a cluster and a git hosting container by name.

        Both deletions are attempted.
        """
        results = await asyncio.gather(
            self._cluster.delete_cluster(request.cluster_name),
            self._git.stop_instance(request.container_name),
            return_exceptions=True,
        )
        error = join_errors(*(r for r in results if isinstance(r, Exception)))
        if error is not None:
            raise error


@asynccontextmanager
async def provisioned_environment(
    orchestrator: EnvironmentOrchestrator, request: ProvisioningRequest
) -> AsyncIterator[RollbackHandle]:
    """
    Provision an environment for the duration of the block.

    Everything created is torn down on exit, including when provisioning
    itself fails or is cancelled; the original failure is re-raised.
    """
    chain = RollbackChain()
    try:
        handle = await orchestrator.provision(request, chain=chain)
    except BaseException as exc:
        await roll_back_after_failure(chain, exc)
        raise

    try:
        yield handle
    except BaseException as exc:
        await orchestrator.aclose()
        await roll_back_after_failure(handle, exc)
        raise

    await orchestrator.aclose()
    await handle.invoke()


async def roll_back_after_failure(
    rollback: RollbackChain | RollbackHandle, exc: BaseException
) -> RollbackError | None:
    """
    Tear down after ``exc`` without letting a teardown failure replace it.

    A ``RollbackError`` is logged and, where ``exc`` has room for it, attached
    as ``exc.rollback_error``; it is also returned.
    """
    try:
        await rollback.invoke()
    except RollbackError as rollback_exc:
        logger.error("rollback_failed", error=str(rollback_exc), cause=str(exc))
        if hasattr(exc, "rollback_error"):
            exc.rollback_error = rollback_exc
        return rollback_exc

    logger.info("rolled_back", actions=len(rollback))
    return None
