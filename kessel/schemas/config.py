from __future__ import annotations
import re
from pathlib import Path
from typing import Literal, Optional
from urllib.parse import urlparse
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from kessel.core.credentials import verify_key_for_project

RepoVisibility = Literal["private", "public", "none"]
PROJECT_NAME_PATTERN = re.compile(r"[a-z0-9-]+")


def to_schema_name(project_name: str) -> str:
    """Normalize a project name into a schema slug (lowercase, underscores)."""
    slug = re.sub(r"[^a-z0-9]+", "_", project_name.strip().lower()).strip("_")
    if not slug:
        raise ValueError(f"Cannot derive a schema name from {project_name!r}")
    if slug[0].isdigit():
        slug = f"p_{slug}"
    return slug


def default_project_path(project_name: str, cwd: Path) -> Path:
    """``cwd`` itself when its name is the project name, else ``cwd/project_name``.

    The directory name is compared with underscores read as hyphens and
    case ignored, so ``test_boiler`` is the home of project ``test-boiler``.
    """
    if cwd.name.replace("_", "-").lower() == project_name:
        return cwd
    return cwd / project_name


def project_ref_from_url(url: str) -> Optional[str]:
    host = urlparse(url).hostname
    if not host:
        return None
    return host.split(".")[0]


class DbTarget(BaseModel):
    model_config = ConfigDict(frozen=True)

    url: str = Field(..., examples=["https://ufqlocxqizmiaozkashi.supabase.co"])
    project_ref: Optional[str] = None

    @field_validator("url")
    @classmethod
    def _clean_url(cls, v: str) -> str:
        v = re.sub(r"[\r\n#]+", "", v).strip().rstrip("/")
        if not urlparse(v).scheme:
            raise ValueError(f"Not a URL: {v!r}")
        return v

    @model_validator(mode="after")
    def _derive_ref(self) -> "DbTarget":
        if not self.project_ref:
            object.__setattr__(self, "project_ref", project_ref_from_url(self.url))
        return self


class ProjectConfig(BaseModel):
    """Immutable answers for one run, produced by the wizard."""
    model_config = ConfigDict(frozen=True)

    username: str = "default"
    project_name: str = Field(..., min_length=1, examples=["my-app"])
    schema_name: str = ""
    project_path: Path = Path()

    infra_db: DbTarget
    dev_db: DbTarget
    service_role_key: str = Field(..., min_length=1)
    anon_key: Optional[str] = None
    db_password: Optional[str] = None

    create_remote_repo: RepoVisibility = "private"
    auto_install_deps: bool = True
    link_vercel: bool = False
    do_initial_commit: bool = True
    do_push: bool = False
    start_dev_server: bool = False

    @field_validator("project_name")
    @classmethod
    def _check_project_name(cls, v: str) -> str:
        # used as repository name, package name and directory name
        if not PROJECT_NAME_PATTERN.fullmatch(v):
            raise ValueError(
                f"Project name {v!r} may only contain lowercase letters, digits and hyphens"
            )
        return v

    @field_validator("username")
    @classmethod
    def _normalize_username(cls, v: str) -> str:
        return re.sub(r"[^a-z0-9_-]+", "-", v.strip().lower()).strip("-") or "default"

    @model_validator(mode="after")
    def _derive_and_verify(self) -> "ProjectConfig":
        if not self.schema_name:
            object.__setattr__(self, "schema_name", to_schema_name(self.project_name))
        if self.project_path == Path():
            object.__setattr__(self, "project_path", default_project_path(self.project_name, Path.cwd()))
        verify_key_for_project(self.service_role_key, self.infra_db.project_ref)
        return self
