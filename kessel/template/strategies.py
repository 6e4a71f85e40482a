"""Ways of getting the boilerplate template onto disk.

Strategies are tried in order; the first one that succeeds wins. Each one
materializes into a temporary directory first and then copies into the
target, so a half-finished download never leaves partial files behind.
"""
from __future__ import annotations
import asyncio
import io
import json
import logging
import shutil
import tarfile
import tempfile
from pathlib import Path, PurePosixPath
from typing import Optional, Sequence
import httpx
from git import Repo
from kessel.core.config import settings

log = logging.getLogger(__name__)

MANIFEST = "package.json"


class MaterializationError(RuntimeError):
    def __init__(self, failures: Sequence[tuple[str, str]]):
        self.failures = list(failures)
        detail = ", ".join(f"{name}: {msg}" for name, msg in self.failures)
        super().__init__(f"Could not materialize template ({detail})")


def is_existing_project(target: Path) -> bool:
    return (target / MANIFEST).is_file()


def _copy_into(src: Path, target: Path) -> None:
    target.mkdir(parents=True, exist_ok=True)
    shutil.copytree(src, target, dirs_exist_ok=True, ignore=shutil.ignore_patterns(".git"))


class MaterializationStrategy:
    name = "base"

    def __init__(self, repo: str = settings.template_repo, branch: str = settings.template_branch):
        self.repo = repo
        self.branch = branch

    async def materialize(self, target: Path, token: Optional[str] = None) -> None:
        raise NotImplementedError


class GitCloneStrategy(MaterializationStrategy):
    name = "git"

    def _url(self, token: Optional[str]) -> str:
        host = settings.github_web_base.split("://", 1)[-1]
        auth = f"{token}@" if token else ""
        return f"https://{auth}{host}/{self.repo}.git"

    def _clone(self, target: Path, token: Optional[str]) -> None:
        with tempfile.TemporaryDirectory(prefix="kessel-clone-") as tmp:
            checkout = Path(tmp) / "template"
            Repo.clone_from(self._url(token), checkout, depth=1, branch=self.branch)
            shutil.rmtree(checkout / ".git", ignore_errors=True)
            _copy_into(checkout, target)

    async def materialize(self, target: Path, token: Optional[str] = None) -> None:
        await asyncio.to_thread(self._clone, target, token)


class TarballStrategy(MaterializationStrategy):
    name = "tarball"

    def __init__(self, repo: str = settings.template_repo, branch: str = settings.template_branch,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        super().__init__(repo, branch)
        self.transport = transport

    def _url(self) -> str:
        return f"{settings.github_web_base}/{self.repo}/archive/refs/heads/{self.branch}.tar.gz"

    @staticmethod
    def _extract(data: bytes, target: Path) -> None:
        with tempfile.TemporaryDirectory(prefix="kessel-tarball-") as tmp:
            root = Path(tmp)
            with tarfile.open(fileobj=io.BytesIO(data), mode="r:gz") as tar:
                for member in tar.getmembers():
                    # strip the leading "<repo>-<branch>/" directory
                    parts = PurePosixPath(member.name).parts[1:]
                    if not parts or ".." in parts or not (member.isfile() or member.isdir()):
                        continue
                    dest = root.joinpath(*parts)
                    if member.isdir():
                        dest.mkdir(parents=True, exist_ok=True)
                        continue
                    dest.parent.mkdir(parents=True, exist_ok=True)
                    src = tar.extractfile(member)
                    if src is not None:
                        dest.write_bytes(src.read())
            if not any(root.iterdir()):
                raise RuntimeError("archive was empty")
            _copy_into(root, target)

    async def materialize(self, target: Path, token: Optional[str] = None) -> None:
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        async with httpx.AsyncClient(timeout=settings.http_timeout, transport=self.transport,
                                     follow_redirects=True) as client:
            r = await client.get(self._url(), headers=headers)
            r.raise_for_status()
        await asyncio.to_thread(self._extract, r.content, target)


def default_strategies() -> list[MaterializationStrategy]:
    return [GitCloneStrategy(), TarballStrategy()]


async def materialize(
    strategies: Sequence[MaterializationStrategy], target: Path, token: Optional[str] = None
) -> str:
    """Run strategies in order and return the name of the one that worked."""
    failures: list[tuple[str, str]] = []
    for strategy in strategies:
        try:
            await strategy.materialize(target, token)
        except Exception as e:
            # tokens end up in clone URLs; keep them out of messages
            msg = str(e).replace(token, "***") if token else str(e)
            log.warning(f"Template strategy {strategy.name} failed: {msg}")
            failures.append((strategy.name, msg))
            continue
        log.info(f"Template materialized with {strategy.name} into {target}")
        return strategy.name
    raise MaterializationError(failures)


def rewrite_manifest(target: Path, project_name: str, version: str = "0.1.0") -> dict:
    path = target / MANIFEST
    data = json.loads(path.read_text(encoding="utf-8"))
    data["name"] = project_name
    data["version"] = version
    path.write_text(json.dumps(data, indent=2) + "\n", encoding="utf-8")
    return data
