"""
Gitea adapter.

A ``GiteaClient`` can only start and stop an instance and create the admin
user. ``signup`` returns an ``AuthenticatedGitea`` carrying the admin
credentials, which is the only way to reach the operations that need them
(key registration, repository creation and upload).
"""

from __future__ import annotations

import asyncio
import base64
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import httpx
import structlog
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_delay,
    wait_fixed,
)

from fluxenv.clients.base import BaseHTTPClient
from fluxenv.core.errors import CommandError, ProviderError, ResourceExistsError
from fluxenv.shell import run_command

logger = structlog.get_logger()

DEFAULT_IMAGE = "gitea/gitea:1.21.7"
SKIPPED_DIRS = frozenset({".git", "vendor"})
KEY_SIZE = 3072
NAME_CONFLICT = "is already in use by container"

OPERATION_CREATE = "create"


class GiteaError(ProviderError):
    """Raised when the Gitea instance cannot be set up or used."""


@dataclass(frozen=True)
class RepoOptions:
    """Repository to create from a local directory."""

    name: str
    trust_model: str = "collaboratorcommitter"
    private: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "trust_model": self.trust_model, "private": self.private}


@dataclass(frozen=True)
class FileChange:
    """One entry of a multi-file contents request."""

    path: str
    content: str
    operation: str = OPERATION_CREATE
    sha: str = ""

    def to_dict(self) -> dict[str, str]:
        return {
            "path": self.path,
            "content": self.content,
            "operation": self.operation,
            "sha": self.sha,
        }


@dataclass
class ChangeFilesOptions:
    files: list[FileChange] = field(default_factory=list)
    message: str = "Initial commit"
    branch: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "message": self.message,
            "files": [f.to_dict() for f in self.files],
        }
        if self.branch:
            payload["branch"] = self.branch
        return payload


def collect_files(root: str | Path) -> list[FileChange]:
    """Read every file under ``root`` as a create operation.

    ``.git`` and ``vendor`` directories are skipped, as are symlinks that
    point at directories.
    """
    base = Path(root)
    changes: list[FileChange] = []

    for dirpath, dirnames, filenames in os.walk(base):
        dirnames[:] = sorted(d for d in dirnames if d not in SKIPPED_DIRS)
        for filename in sorted(filenames):
            path = Path(dirpath) / filename
            try:
                body = path.read_bytes()
            except IsADirectoryError:
                continue
            changes.append(
                FileChange(
                    path=path.relative_to(base).as_posix(),
                    content=base64.b64encode(body).decode(),
                )
            )

    return changes


def generate_rsa_key_pair(bits: int = KEY_SIZE) -> tuple[bytes, str]:
    """Return (private key PEM, OpenSSH public key)."""
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=bits)
    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )
    public_ssh = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.OpenSSH,
        format=serialization.PublicFormat.OpenSSH,
    )
    return private_pem, public_ssh.decode()


class GiteaClient(BaseHTTPClient):
    """Unauthenticated Gitea capability: instance lifecycle and admin signup."""

    def __init__(
        self,
        address: str = "http://localhost",
        http_port: int = 3000,
        ssh_port: int = 2222,
        *,
        image: str = DEFAULT_IMAGE,
        timeout: float = 30.0,
        startup_timeout: float = 60.0,
    ) -> None:
        super().__init__(f"{address.rstrip('/')}:{http_port}", timeout=timeout, verify=False)
        self.http_port = http_port
        self.ssh_port = ssh_port
        self._image = image
        self._startup_timeout = startup_timeout

    async def start_instance(self, container_name: str) -> str:
        """Run a Gitea container and wait until its API answers."""
        logger.info("gitea_starting", container=container_name, image=self._image)
        try:
            await run_command(
                [
                    "docker",
                    "run",
                    "-d",
                    "-p",
                    f"{self.http_port}:3000",
                    "-p",
                    f"{self.ssh_port}:22",
                    # skip the installation page
                    "-e",
                    "GITEA__security__INSTALL_LOCK=true",
                    "--name",
                    container_name,
                    self._image,
                ]
            )
        except CommandError as exc:
            if NAME_CONFLICT in exc.output:
                raise ResourceExistsError("container", container_name, exc) from exc
            raise
        await self.wait_until_up()
        logger.info("gitea_started", container=container_name)
        return container_name

    async def wait_until_up(self) -> None:
        """Poll the version endpoint until the instance serves requests."""
        url = f"{self._base_url}/api/v1/version"

        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(httpx.HTTPError),
            stop=stop_after_delay(self._startup_timeout),
            wait=wait_fixed(1),
            reraise=True,
        ):
            with attempt:
                async with httpx.AsyncClient(timeout=self._timeout, verify=False) as client:
                    response = await client.get(url)
                    response.raise_for_status()

    async def stop_instance(self, container_name: str) -> None:
        await run_command(["docker", "container", "rm", "-f", container_name])
        logger.info("gitea_removed", container=container_name)

    async def signup(
        self, container_name: str, username: str, password: str, email: str
    ) -> AuthenticatedGitea:
        """Create the admin user and return a client acting as that user."""
        await run_command(
            [
                "docker",
                "exec",
                "-u",
                "git",
                container_name,
                "gitea",
                "admin",
                "user",
                "create",
                "--admin",
                "--username",
                username,
                "--password",
                password,
                "--email",
                email,
                "--must-change-password=false",
            ]
        )
        logger.info("gitea_admin_created", username=username)
        return AuthenticatedGitea(
            self._base_url, username=username, password=password, timeout=self._timeout
        )


class AuthenticatedGitea(BaseHTTPClient):
    """Gitea operations performed as the admin user."""

    def __init__(self, base_url: str, *, username: str, password: str, timeout: float = 30.0):
        super().__init__(base_url, timeout=timeout, verify=False)
        self.username = username
        self._password = password

    def _auth(self) -> httpx.Auth:
        return httpx.BasicAuth(self.username, self._password)

    async def generate_key_pair(self, name: str, out_path: str) -> int:
        """
        Generate an RSA key pair, register the public half, save the private half.

        Args:
            name: Title of the public key in Gitea
            out_path: Where to write the private key PEM

        Returns:
            The Gitea id of the registered public key
        """
        private_pem, public_ssh = await asyncio.to_thread(generate_rsa_key_pair)

        created = await self.post("/api/v1/user/keys", json={"title": name, "key": public_ssh})

        try:
            await asyncio.to_thread(_write_private_key, Path(out_path), private_pem)
        except OSError as exc:
            raise GiteaError(f"failed to save private key to file: {exc}") from exc

        logger.info("gitea_key_registered", title=name, private_key_path=out_path)
        return int(created.get("id", 0))

    async def create_repository(self, repo: RepoOptions) -> dict[str, Any]:
        return await self.post("/api/v1/user/repos", json=repo.to_dict())

    async def upload_files(self, repo_name: str, opts: ChangeFilesOptions) -> None:
        await self.post(
            f"/api/v1/repos/{self.username}/{repo_name}/contents", json=opts.to_dict()
        )

    async def seed_repository(self, repo: RepoOptions, local_path: str) -> None:
        """Create ``repo`` and upload every file found under ``local_path``."""
        await self.create_repository(repo)
        files = await asyncio.to_thread(collect_files, local_path)
        logger.info("gitea_uploading_files", repo=repo.name, files=len(files))
        await self.upload_files(repo.name, ChangeFilesOptions(files=files))


def _write_private_key(path: Path, pem: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(pem)
    path.chmod(0o600)
