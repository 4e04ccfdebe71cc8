from __future__ import annotations

import structlog

from fluxenv.shell import run_command

logger = structlog.get_logger()


class KubectlApplier:
    """Applies manifest files with ``kubectl apply``."""

    def __init__(self, binary: str = "kubectl", *, context: str | None = None) -> None:
        self._binary = binary
        self._context = context

    async def apply(self, *manifest_paths: str) -> None:
        """Apply manifests one at a time, stopping at the first failure."""
        for manifest in manifest_paths:
            args = [self._binary, "apply", "-f", manifest]
            if self._context:
                args.extend(["--context", self._context])
            await run_command(args)
            logger.info("manifest_applied", manifest=manifest)
