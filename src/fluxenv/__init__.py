"""Ephemeral GitOps test environments: Gitea + kind + Flux."""

__version__ = "0.1.0"
