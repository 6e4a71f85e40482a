from __future__ import annotations
import asyncio
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional, Sequence

log = logging.getLogger(__name__)


class CommandError(RuntimeError):
    def __init__(self, command: Sequence[str], exit_code: Optional[int], output: str = "", timed_out: bool = False):
        self.command = list(command)
        self.exit_code = exit_code
        self.output = output
        self.timed_out = timed_out
        if timed_out:
            detail = "timed out"
        elif exit_code is None:
            detail = "could not start"
        else:
            detail = f"exit code {exit_code}"
        msg = f"Command '{' '.join(self.command)}' failed ({detail})"
        if output.strip():
            msg = f"{msg}: {output.strip()[-500:]}"
        super().__init__(msg)


@dataclass
class CommandResult:
    command: list[str]
    exit_code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    @property
    def output(self) -> str:
        return (self.stdout + self.stderr).strip()


def _merged_env(env: Optional[Mapping[str, str]]) -> Optional[dict]:
    if env is None:
        return None
    merged = dict(os.environ)
    merged.update(env)
    return merged


class CommandRunner:
    """Thin async wrapper around external processes.

    Every call that captures output carries a deadline. ``run_inherit`` is
    for long-running installers that print straight to the terminal.
    """

    def __init__(self, default_timeout: float = 20.0):
        self.default_timeout = default_timeout

    async def capture(
        self,
        command: Sequence[str],
        cwd: Optional[Path] = None,
        env: Optional[Mapping[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> CommandResult:
        log.debug(f"Running {' '.join(command)}")
        try:
            proc = await asyncio.create_subprocess_exec(
                *command,
                cwd=str(cwd) if cwd else None,
                env=_merged_env(env),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise CommandError(command, None, str(e)) from e
        try:
            out, err = await asyncio.wait_for(proc.communicate(), timeout or self.default_timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            raise CommandError(command, None, timed_out=True) from None
        return CommandResult(
            command=list(command),
            exit_code=proc.returncode,
            stdout=out.decode("utf-8", errors="replace"),
            stderr=err.decode("utf-8", errors="replace"),
        )

    async def probe(self, command: Sequence[str], timeout: Optional[float] = None) -> bool:
        """True when the command exists and exits 0 within the deadline."""
        try:
            result = await self.capture(command, timeout=timeout)
        except CommandError:
            return False
        return result.ok

    async def check_output(
        self,
        command: Sequence[str],
        cwd: Optional[Path] = None,
        env: Optional[Mapping[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> str:
        result = await self.capture(command, cwd=cwd, env=env, timeout=timeout)
        if not result.ok:
            raise CommandError(command, result.exit_code, result.output)
        return result.stdout

    async def run_inherit(
        self,
        command: Sequence[str],
        cwd: Optional[Path] = None,
        env: Optional[Mapping[str, str]] = None,
    ) -> None:
        """Run with the terminal's stdio; raise CommandError on a non-zero exit."""
        log.debug(f"Running (inherit stdio) {' '.join(command)}")
        try:
            proc = await asyncio.create_subprocess_exec(
                *command, cwd=str(cwd) if cwd else None, env=_merged_env(env)
            )
        except FileNotFoundError as e:
            raise CommandError(command, None, str(e)) from e
        code = await proc.wait()
        if code != 0:
            raise CommandError(command, code)
