"""
Create command.

Provisions an environment and either keeps it running until interrupted
(then tears it down) or, with ``--keep``, leaves it in place.
"""

from __future__ import annotations

import asyncio
import signal
from typing import Any, Mapping

from fluxenv.cli.ux import (
    console,
    error,
    header,
    info,
    print_table,
    spinner,
    success,
    warning,
)
from fluxenv.config import Settings, apply_overrides, load_request, request_from_dict
from fluxenv.core.errors import ProvisioningError
from fluxenv.models import ProvisioningRequest
from fluxenv.orchestrator import (
    EnvironmentOrchestrator,
    provisioned_environment,
    roll_back_after_failure,
)
from fluxenv.rollback import RollbackChain, RollbackHandle


def build_request(config_path: str | None, overrides: Mapping[str, Any]) -> ProvisioningRequest:
    """Read the request file (if any) and overlay command-line values."""
    if config_path:
        return load_request(config_path, overrides)
    return apply_overrides(request_from_dict({}), overrides)


def create_command(
    request: ProvisioningRequest,
    settings: Settings,
    *,
    keep: bool = False,
) -> int:
    """
    Provision an environment.

    Exit codes: 0 = created (and torn down again unless kept), otherwise the
    exit code of the error raised.
    """
    request = request.validate()
    orchestrator = EnvironmentOrchestrator.from_settings(
        settings,
        http_port=request.git_http_port,
        ssh_port=request.git_ssh_port,
        git_address=request.git_address,
    )

    header(f"Environment: {request.cluster_name}")
    console.print(f"[muted]Git hosting container:[/muted] {request.git_container_name}")
    console.print(f"[muted]Repositories:[/muted] {', '.join(request.local_repo_paths)}")
    console.print()

    if keep:
        asyncio.run(_create_and_keep(orchestrator, request))
        success("Environment is ready")
        _report_skipped(orchestrator)
        info(
            f"Tear it down with: fluxenv delete --cluster {request.cluster_name} "
            f"--container {request.git_container_name}"
        )
    else:
        asyncio.run(_create_until_interrupted(orchestrator, request))
        success("Environment torn down")

    return 0


async def _create_and_keep(
    orchestrator: EnvironmentOrchestrator, request: ProvisioningRequest
) -> RollbackHandle:
    chain = RollbackChain()
    async with orchestrator:
        try:
            with spinner("Provisioning environment..."):
                return await orchestrator.provision(request, chain=chain)
        except BaseException as exc:
            if isinstance(exc, ProvisioningError):
                error(f"Provisioning failed: {exc.message}")
            else:
                error("Provisioning interrupted")
            await _roll_back(chain, exc)
            raise


async def _create_until_interrupted(
    orchestrator: EnvironmentOrchestrator, request: ProvisioningRequest
) -> None:
    info("Provisioning environment...")
    async with provisioned_environment(orchestrator, request) as handle:
        success("Environment is ready")
        _report_skipped(orchestrator)
        info("Press Ctrl-C to tear it down")
        await _wait_for_signal()
        console.print()
        info(f"Tearing down ({len(handle)} actions)")


async def _wait_for_signal() -> None:
    # Interrupts before this point cancel provisioning instead
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)
    try:
        await stop.wait()
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)


async def _roll_back(chain: RollbackChain, exc: BaseException) -> None:
    with spinner("Rolling back..."):
        rollback_error = await roll_back_after_failure(chain, exc)
    if rollback_error is not None:
        warning(f"Rollback incomplete: {rollback_error.message}")
    else:
        info("Rolled back")


def _report_skipped(orchestrator: EnvironmentOrchestrator) -> None:
    if not orchestrator.skipped_units:
        return
    warning(f"{len(orchestrator.skipped_units)} kustomization(s) were not reconciled")
    print_table(
        "Skipped kustomizations",
        ["Kustomization", "Error"],
        [[str(unit), reason] for unit, reason in orchestrator.skipped_units.items()],
    )
