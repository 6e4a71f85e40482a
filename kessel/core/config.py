from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="KESSEL_", env_file=".env", extra="ignore")

    app_name: str = "kessel"
    app_version: str = "2.1.0"

    github_api_base: str = "https://api.github.com"
    github_web_base: str = "https://github.com"
    template_repo: str = "phkoenig/kessel-boilerplate"
    template_branch: str = "main"

    infra_db_url: str = "https://ufqlocxqizmiaozkashi.supabase.co"
    dev_db_url: str = "https://jpmhwyjiuodsvjowddsm.supabase.co"
    mcp_base_url: str = "https://mcp.supabase.com/mcp"

    http_timeout: float = 30.0
    repo_check_timeout: float = 15.0
    reachability_timeout: float = 10.0
    probe_timeout: float = 20.0

    run_log_dir: str = ".kessel"
    theme_bucket: str = "themes"
    default_theme: str = "default"

    supabase_pat: str | None = Field(
        default=None, validation_alias=AliasChoices("KESSEL_SUPABASE_PAT", "SUPABASE_PAT")
    )
    supabase_db_password: str | None = Field(
        default=None, validation_alias=AliasChoices("KESSEL_SUPABASE_DB_PASSWORD", "SUPABASE_DB_PASSWORD")
    )

settings = Settings()
