"""SkillsHub configuration — loaded from environment / .env file."""

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_prefix="SKILLSHUB_", extra="ignore")

    env: str = "development"
    database_url: str = "sqlite+aiosqlite:///./skillshub.db"

    # Central repository (overridable at runtime via the `central_repo_path` setting)
    central_repo_dir: Path = Path.home() / ".skillshub"
    git_cache_dir: Path = Path.home() / ".cache" / "skillshub" / "git"
    git_cache_ttl_secs: int = 60  # re-use a clone this fresh instead of re-fetching
    git_timeout: float = 120.0

    # Skill registry
    registry_base_url: str = "https://clawhub.ai"
    registry_timeout: float = 30.0

    # Remote hosts
    ssh_connect_timeout: float = 15.0
    ssh_command_timeout: float = 30.0
    ssh_verify_host_keys: bool = False  # check ~/.ssh/known_hosts when True
    remote_central_dir: str = ".skillshub"  # relative to the remote $HOME

    @property
    def echo_sql(self) -> bool:
        return self.env == "development" and self.database_url.startswith("sqlite")


settings = Settings()
