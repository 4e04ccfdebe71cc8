"""
Configuration for fluxenv.

- Settings: environment-driven tool settings (FLUXENV_ prefix)
- Loader: provisioning requests described in YAML files
"""

from fluxenv.config.loader import apply_overrides, load_request, request_from_dict
from fluxenv.config.settings import Settings, get_settings

__all__ = [
    "Settings",
    "get_settings",
    "apply_overrides",
    "load_request",
    "request_from_dict",
]
