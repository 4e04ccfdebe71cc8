"""
Bounded readiness polling for namespaced resources.

Each resource is polled by its own task on a fixed interval until its probe
reports ready, its deadline passes, or the caller is cancelled. A missing
resource counts as "not ready yet" since it may still be being created.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable

import structlog

from fluxenv.core.errors import FluxEnvError, ReadinessError, ResourceNotFoundError
from fluxenv.dependencies.resolver import dedupe
from fluxenv.models import NamespacedName, ReadinessResult, ReadinessStatus

logger = structlog.get_logger()

DEFAULT_POLL_INTERVAL = 2.0

Probe = Callable[[NamespacedName], Awaitable[bool]]
Observer = Callable[[ReadinessResult], None]


class ReadinessPoller:
    """Waits for resources to report ready, one polling task per resource."""

    def __init__(self, probe: Probe, *, interval: float = DEFAULT_POLL_INTERVAL) -> None:
        self._probe = probe
        self.interval = interval

    async def _poll_until_ready(self, resource: NamespacedName) -> None:
        while True:
            try:
                if await self._probe(resource):
                    return
            except ResourceNotFoundError:
                logger.debug("resource_not_found_yet", resource=str(resource))
            await asyncio.sleep(self.interval)

    async def poll(
        self, resource: NamespacedName, *, timeout: float | None = None
    ) -> ReadinessResult:
        """Poll one resource until it is ready, errors, or times out."""
        try:
            await asyncio.wait_for(self._poll_until_ready(resource), timeout=timeout)
        except asyncio.TimeoutError:
            return ReadinessResult(
                resource=resource,
                status=ReadinessStatus.CANCELLED,
                error=TimeoutError(f"timed out after {timeout}s"),
            )
        except Exception as exc:
            return ReadinessResult(resource=resource, status=ReadinessStatus.ERROR, error=exc)
        return ReadinessResult(resource=resource, status=ReadinessStatus.READY)

    async def wait_ready(
        self,
        *resources: NamespacedName,
        timeout: float | None = None,
        observer: Observer | None = None,
    ) -> list[ReadinessResult]:
        """
        Wait for every resource concurrently.

        Args:
            resources: Identities to wait for (duplicates are polled once)
            timeout: Per-resource deadline in seconds, None to wait until cancelled
            observer: Called with each result as soon as that resource finishes

        Returns:
            Results in request order, all ready

        Raises:
            ReadinessError: naming every resource that failed or timed out
        """

        async def run(resource: NamespacedName) -> ReadinessResult:
            result = await self.poll(resource, timeout=timeout)
            if result.ready:
                logger.info("resource_ready", name=resource.name, namespace=resource.namespace)
            else:
                logger.warning(
                    "resource_not_ready",
                    name=resource.name,
                    namespace=resource.namespace,
                    status=result.status.value,
                    error=str(result.error),
                )
            if observer is not None:
                observer(result)
            return result

        results = list(await asyncio.gather(*(run(r) for r in dedupe(resources))))

        failures = [_failure(result) for result in results if not result.ready]
        if failures:
            raise ReadinessError(failures)
        return results


def _failure(result: ReadinessResult) -> FluxEnvError:
    resource = result.resource
    err = FluxEnvError(
        f"failed to wait for {resource.name} in namespace {resource.namespace}: {result.error}",
        details={"name": resource.name, "namespace": resource.namespace},
    )
    err.__cause__ = result.error
    return err
