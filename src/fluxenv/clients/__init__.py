"""
Adapters for the systems an environment is built from.

- gitea: disposable git hosting
- kind: disposable Kubernetes clusters
- kubectl: manifest application
- flux: GitOps bootstrap, reconciliation and readiness
"""

from fluxenv.clients.flux import BootstrapOptions, FluxClient, GitSourceTarget
from fluxenv.clients.gitea import AuthenticatedGitea, GiteaClient, RepoOptions
from fluxenv.clients.kind import KindClient
from fluxenv.clients.kubectl import KubectlApplier

__all__ = [
    "AuthenticatedGitea",
    "BootstrapOptions",
    "FluxClient",
    "GiteaClient",
    "GitSourceTarget",
    "KindClient",
    "KubectlApplier",
    "RepoOptions",
]
