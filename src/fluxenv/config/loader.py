"""
Provisioning request loading.

A request can be described in a YAML file; command-line flags override any
value the file sets.

Example:

    local_repo_paths:
      - /src/k8s-infra
    bootstrap_repo: k8s-infra
    bootstrap_path: flux/clusters/dev
    cluster_config_path: /src/k8s-infra/test/kind-cluster.yaml
    units_to_wait_for:
      - flux-system/apps
"""

from __future__ import annotations

from dataclasses import fields, replace
from pathlib import Path
from typing import Any, Mapping

import structlog
import yaml

from fluxenv.core.errors import ConfigurationError
from fluxenv.models import NamespacedName, ProvisioningRequest

logger = structlog.get_logger()

_TUPLE_FIELDS = {"local_repo_paths", "images_to_load", "manifests_to_apply"}
_INT_FIELDS = {"git_http_port", "git_ssh_port"}


def request_from_dict(data: Mapping[str, Any]) -> ProvisioningRequest:
    """Build a request from plain data, rejecting unknown keys."""
    known = {f.name for f in fields(ProvisioningRequest)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigurationError(
            f"unknown provisioning keys: {', '.join(unknown)}", details={"keys": unknown}
        )

    values: dict[str, Any] = {}
    for key, value in data.items():
        if value is None:
            continue
        if key in _TUPLE_FIELDS:
            values[key] = tuple(str(v) for v in _as_list(key, value))
        elif key == "units_to_wait_for":
            values[key] = tuple(_parse_unit(v) for v in _as_list(key, value))
        elif key in _INT_FIELDS:
            try:
                values[key] = int(value)
            except (TypeError, ValueError) as exc:
                raise ConfigurationError(f"{key} must be an integer") from exc
        else:
            values[key] = str(value)

    return ProvisioningRequest(**values)


def load_request(path: str | Path, overrides: Mapping[str, Any] | None = None) -> ProvisioningRequest:
    """
    Load a request from a YAML file.

    Args:
        path: YAML file with request fields at the top level
        overrides: Values that take precedence over the file (None values ignored)

    Raises:
        ConfigurationError: If the file is missing, unreadable, or has unknown keys
    """
    config_path = Path(path)
    if not config_path.exists():
        raise ConfigurationError(f"config file not found: {config_path}")

    try:
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"invalid YAML in {config_path}: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigurationError(f"{config_path} must contain a mapping")

    logger.debug("loaded_request_config", path=str(config_path))
    request = request_from_dict(data)
    return apply_overrides(request, overrides or {})


def apply_overrides(
    request: ProvisioningRequest, overrides: Mapping[str, Any]
) -> ProvisioningRequest:
    """Overlay non-empty override values onto a request."""
    present = {k: v for k, v in overrides.items() if v not in (None, "", (), [])}
    if not present:
        return request
    converted = request_from_dict(present)
    return replace(request, **{key: getattr(converted, key) for key in present})


def _as_list(key: str, value: Any) -> list[Any]:
    if isinstance(value, str):
        return [value]
    if isinstance(value, (list, tuple)):
        return list(value)
    raise ConfigurationError(f"{key} must be a list")


def _parse_unit(value: Any) -> NamespacedName:
    try:
        return NamespacedName.parse(str(value))
    except ValueError as exc:
        raise ConfigurationError(str(exc)) from exc
