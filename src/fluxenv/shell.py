"""
Async wrappers around the external CLIs (docker, kind, kubectl, flux).

Output is captured combined (stderr folded into stdout) so failures carry
everything the tool printed.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Mapping, Sequence

import structlog

from fluxenv.core.errors import CommandError

logger = structlog.get_logger()

_READ_CHUNK = 4096


@dataclass(frozen=True)
class CommandResult:
    """Completed external command."""

    args: list[str]
    returncode: int | None
    output: str
    stopped_at_marker: bool = False


async def _spawn(
    args: Sequence[str], cwd: str | None, env: Mapping[str, str] | None
) -> asyncio.subprocess.Process:
    logger.debug("running_command", command=" ".join(args[:3]))
    return await asyncio.create_subprocess_exec(
        *args,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.STDOUT,
        cwd=cwd,
        env=dict(env) if env is not None else None,
    )


async def _kill(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is None:
        proc.kill()
        await proc.wait()


async def run_command(
    args: Sequence[str],
    *,
    check: bool = True,
    cwd: str | None = None,
    env: Mapping[str, str] | None = None,
) -> CommandResult:
    """
    Run a command to completion.

    Cancelling the caller kills the process.

    Raises:
        CommandError: If ``check`` is set and the command exits non-zero
    """
    proc = await _spawn(args, cwd, env)
    try:
        stdout, _ = await proc.communicate()
    except asyncio.CancelledError:
        await _kill(proc)
        raise

    output = stdout.decode(errors="replace") if stdout else ""
    if check and proc.returncode != 0:
        raise CommandError(list(args), proc.returncode, output)
    return CommandResult(args=list(args), returncode=proc.returncode, output=output)


async def run_until_marker(
    args: Sequence[str],
    marker: str,
    *,
    cwd: str | None = None,
    env: Mapping[str, str] | None = None,
) -> CommandResult:
    """
    Run a command until ``marker`` shows up in its output, then stop it.

    Some tools keep running (and waiting) long after the part we care about
    has finished. Once the marker is seen the process is killed and the kill
    is not treated as a failure. A command that exits on its own must exit
    zero.

    Raises:
        CommandError: If the command exits non-zero before the marker appears
    """
    proc = await _spawn(args, cwd, env)
    assert proc.stdout is not None

    buf = bytearray()
    marker_bytes = marker.encode()
    stopped = False

    try:
        while True:
            chunk = await proc.stdout.read(_READ_CHUNK)
            if not chunk:
                break
            buf.extend(chunk)
            if marker_bytes in buf:
                logger.debug("command_marker_seen", command=" ".join(args[:3]), marker=marker)
                stopped = True
                await _kill(proc)
                break
        await proc.wait()
    except asyncio.CancelledError:
        await _kill(proc)
        raise

    output = buf.decode(errors="replace")
    if not stopped and proc.returncode != 0:
        raise CommandError(list(args), proc.returncode, output)
    return CommandResult(
        args=list(args), returncode=proc.returncode, output=output, stopped_at_marker=stopped
    )
