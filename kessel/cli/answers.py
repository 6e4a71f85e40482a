"""Build a ProjectConfig from a YAML answers file plus command line overrides.

This stands in for the interactive wizard: the file holds exactly the
answers the wizard would collect, e.g.::

    project_name: my-app
    username: jane
    service_role_key: eyJ...
    infra_db: {url: https://abc.supabase.co}
    create_remote_repo: private
"""
from __future__ import annotations
import os
from pathlib import Path
from typing import Any, Optional
import yaml
from kessel.core.config import Settings, settings as default_settings
from kessel.schemas.config import ProjectConfig, default_project_path


class AnswersError(ValueError):
    pass


def load_answers(path: Optional[Path]) -> dict[str, Any]:
    if path is None:
        return {}
    if not path.is_file():
        raise AnswersError(f"Answers file not found: {path}")
    data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise AnswersError(f"Answers file must contain a mapping, got {type(data).__name__}")
    return data


def build_config(
    answers: dict[str, Any],
    project_name: Optional[str] = None,
    base_path: Optional[Path] = None,
    settings: Settings = default_settings,
) -> ProjectConfig:
    data = dict(answers)
    if project_name:
        data["project_name"] = project_name
    if not data.get("project_name"):
        raise AnswersError("A project name is required (argument or 'project_name' in the answers file)")

    data.setdefault("infra_db", {"url": settings.infra_db_url})
    data.setdefault("dev_db", {"url": settings.dev_db_url})
    if not data.get("service_role_key"):
        key = os.environ.get("SUPABASE_SERVICE_ROLE_KEY") or os.environ.get("SERVICE_ROLE_KEY")
        if key:
            data["service_role_key"] = key
    if not data.get("db_password") and settings.supabase_db_password:
        data["db_password"] = settings.supabase_db_password
    if "project_path" not in data:
        if base_path is None:
            data["project_path"] = default_project_path(str(data["project_name"]), Path.cwd())
        else:
            data["project_path"] = base_path / data["project_name"]
    return ProjectConfig.model_validate(data)
