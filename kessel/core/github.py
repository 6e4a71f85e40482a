from __future__ import annotations
import json
import httpx
from dataclasses import dataclass
from typing import Optional
from kessel.core.config import settings


class GitHubError(RuntimeError):
    def __init__(self, status: int, body: str, message: str = ""):
        self.status = status
        self.body = body
        super().__init__(message or f"GitHub API returned {status}: {body[:300]}")

    def messages(self) -> list[str]:
        try:
            payload = json.loads(self.body)
        except ValueError:
            return [self.body]
        if not isinstance(payload, dict):
            return [self.body]
        found = [str(payload.get("message", ""))]
        for err in payload.get("errors") or []:
            found.append(str(err.get("message", "")) if isinstance(err, dict) else str(err))
        return found

    @property
    def already_exists(self) -> bool:
        # GitHub also answers 422 for plain validation failures
        return self.status == 422 and any("already exists" in m.lower() for m in self.messages())


@dataclass
class GitHubClient:
    token: str
    api_base: str = settings.github_api_base
    transport: Optional[httpx.AsyncBaseTransport] = None

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.token}",
            "Accept": "application/vnd.github+json",
        }

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout, transport=self.transport)

    @staticmethod
    def _raise_for_status(r: httpx.Response) -> None:
        if r.status_code >= 400:
            raise GitHubError(r.status_code, r.text)

    async def get_authenticated_user(self, timeout: float = settings.http_timeout) -> dict:
        async with self._client(timeout) as client:
            r = await client.get(f"{self.api_base}/user", headers=self._headers())
            self._raise_for_status(r)
            return r.json()

    async def get_repo(self, owner: str, repo: str, timeout: float = settings.repo_check_timeout) -> Optional[dict]:
        """Return the repository or None when it does not exist."""
        async with self._client(timeout) as client:
            r = await client.get(f"{self.api_base}/repos/{owner}/{repo}", headers=self._headers())
            if r.status_code == 404:
                return None
            self._raise_for_status(r)
            return r.json()

    async def create_repo(self, name: str, private: bool = True, timeout: float = settings.http_timeout) -> dict:
        async with self._client(timeout) as client:
            r = await client.post(
                f"{self.api_base}/user/repos",
                headers=self._headers(),
                json={"name": name, "private": private, "auto_init": False},
            )
            self._raise_for_status(r)
            return r.json()
