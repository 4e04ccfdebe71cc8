"""
Delete command: remove a kept environment by name.
"""

from __future__ import annotations

import asyncio

from fluxenv.cli.ux import header, spinner, success
from fluxenv.config import Settings
from fluxenv.models import TeardownRequest
from fluxenv.orchestrator import EnvironmentOrchestrator


def delete_command(request: TeardownRequest, settings: Settings) -> int:
    """Delete the cluster and the git hosting container. Both are attempted."""
    orchestrator = EnvironmentOrchestrator.from_settings(settings)

    header(f"Deleting environment: {request.cluster_name}")
    with spinner("Removing cluster and git hosting container..."):
        asyncio.run(orchestrator.teardown(request))

    success(f"Deleted cluster {request.cluster_name} and container {request.container_name}")
    return 0
