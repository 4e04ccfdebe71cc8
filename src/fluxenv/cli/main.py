"""
fluxenv CLI - ephemeral GitOps test environments.

Usage:
    fluxenv create --config env.yaml
    fluxenv create --local-repo ../k8s-infra --bootstrap-repo k8s-infra \\
        --flux-path flux/clusters/dev --kind-config kind.yaml --keep
    fluxenv delete --cluster integration --container gitea-abcd
"""

from __future__ import annotations

import argparse
from typing import Any, Sequence

from fluxenv import __version__
from fluxenv.config import get_settings
from fluxenv.core.errors import main_with_error_handling
from fluxenv.logging import configure_logging
from fluxenv.models import DEFAULT_CLUSTER_NAME, TeardownRequest


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fluxenv", description="Ephemeral Gitea + kind + Flux test environments"
    )
    parser.add_argument("--version", action="version", version=f"fluxenv {__version__}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument("--json-logs", action="store_true", help="Emit logs as JSON")
    subparsers = parser.add_subparsers(dest="command")

    # create
    create_parser = subparsers.add_parser("create", help="Provision a test environment")
    create_parser.add_argument("--config", help="YAML file describing the environment")
    create_parser.add_argument("--http-port", type=int, help="Gitea HTTP port (default 3000)")
    create_parser.add_argument("--ssh-port", type=int, help="Gitea SSH port (default 2222)")
    create_parser.add_argument(
        "--local-repo",
        action="append",
        dest="local_repos",
        help="Local repository to push to Gitea (repeatable)",
    )
    create_parser.add_argument("--bootstrap-repo", help="Repository Flux is bootstrapped from")
    create_parser.add_argument("--flux-path", help="Path in the bootstrap repo for Flux manifests")
    create_parser.add_argument("--kind-config", help="kind cluster config file")
    create_parser.add_argument("--cluster", help=f"Cluster name (default {DEFAULT_CLUSTER_NAME})")
    create_parser.add_argument("--container", help="Gitea container name (default random)")
    create_parser.add_argument("--private-key", help="Where to save the Flux private key (.pem)")
    create_parser.add_argument("--branch", help="Branch Flux tracks (default main)")
    create_parser.add_argument(
        "--kind-images", nargs="+", help="Local docker images to load into the cluster"
    )
    create_parser.add_argument(
        "--manifests", nargs="+", help="Manifests to apply before bootstrapping"
    )
    create_parser.add_argument(
        "--kustomizations",
        nargs="+",
        help="Kustomizations to wait for, as namespace/name",
    )
    create_parser.add_argument(
        "--keep",
        action="store_true",
        help="Leave the environment running instead of tearing it down on Ctrl-C",
    )

    # delete
    delete_parser = subparsers.add_parser("delete", help="Delete a kept test environment")
    delete_parser.add_argument(
        "--cluster", default=DEFAULT_CLUSTER_NAME, help="Cluster name to delete"
    )
    delete_parser.add_argument("--container", default="gitea", help="Gitea container to remove")

    return parser


def split_values(values: Sequence[str] | None) -> list[str]:
    """Flatten repeated and comma-separated flag values."""
    if not values:
        return []
    return [item.strip() for value in values for item in value.split(",") if item.strip()]


def request_overrides(args: argparse.Namespace) -> dict[str, Any]:
    """Map ``create`` flags onto provisioning request fields."""
    return {
        "git_http_port": args.http_port,
        "git_ssh_port": args.ssh_port,
        "local_repo_paths": split_values(args.local_repos),
        "bootstrap_repo": args.bootstrap_repo,
        "bootstrap_path": args.flux_path,
        "cluster_config_path": args.kind_config,
        "cluster_name": args.cluster,
        "git_container_name": args.container,
        "private_key_path": args.private_key,
        "branch": args.branch,
        "images_to_load": split_values(args.kind_images),
        "manifests_to_apply": split_values(args.manifests),
        "units_to_wait_for": split_values(args.kustomizations),
    }


@main_with_error_handling()
def run(args: argparse.Namespace) -> int:
    settings = get_settings()

    if args.command == "create":
        from fluxenv.cli.create import build_request, create_command

        request = build_request(args.config, request_overrides(args))
        return create_command(request, settings, keep=args.keep)

    if args.command == "delete":
        from fluxenv.cli.delete import delete_command

        return delete_command(
            TeardownRequest(cluster_name=args.cluster, container_name=args.container), settings
        )

    return 2


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 2

    settings = get_settings()
    level = "DEBUG" if args.verbose else settings.log_level.upper()
    configure_logging(level, json_output=args.json_logs or settings.log_json)

    return run(args)


if __name__ == "__main__":
    raise SystemExit(main())
