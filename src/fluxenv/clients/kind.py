"""
kind (Kubernetes in Docker) adapter.
"""

from __future__ import annotations

import structlog

from fluxenv.core.errors import CommandError, ResourceExistsError
from fluxenv.shell import run_command

logger = structlog.get_logger()

IMAGE_NOT_PRESENT = "not present locally"
CLUSTER_EXISTS = "already exist for a cluster with the name"


class KindClient:
    """Create, delete and load images into kind clusters."""

    def __init__(self, binary: str = "kind") -> None:
        self._binary = binary

    async def create_cluster(self, name: str, config_path: str) -> None:
        try:
            await run_command(
                [self._binary, "create", "cluster", "--name", name, "--config", config_path]
            )
        except CommandError as exc:
            if CLUSTER_EXISTS in exc.output:
                raise ResourceExistsError("cluster", name, exc) from exc
            raise
        logger.info("kind_cluster_created", cluster=name)

    async def delete_cluster(self, name: str) -> None:
        await run_command([self._binary, "delete", "cluster", "--name", name])
        logger.info("kind_cluster_deleted", cluster=name)

    async def load_image(self, image: str, cluster_name: str) -> bool:
        """
        Load a local docker image into the cluster nodes.

        Returns:
            False if the image is not present on this host (nothing loaded)

        Raises:
            CommandError: For any other failure
        """
        try:
            await run_command(
                [self._binary, "load", "docker-image", image, "--name", cluster_name]
            )
        except CommandError as exc:
            if IMAGE_NOT_PRESENT in exc.output:
                logger.warning("kind_image_not_present_locally", image=image)
                return False
            raise
        logger.info("kind_image_loaded", image=image, cluster=cluster_name)
        return True
