from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_repo_root() -> Path:
    return Path(__file__).resolve().parents[2]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="REPORTFLOW_", extra="ignore")

    repo_root: Path = Field(default_factory=_default_repo_root)
    config_dir: Path | None = None

    # Stage catalog (YAML). When unset the built-in catalog is used.
    catalog_path: Path | None = None

    # Artifact store bounds (latest per stage is always kept on top of these)
    max_stage_results: int = Field(default=100, ge=1)
    keep_recent_stage_results: int = Field(default=20, ge=0)
    max_concept_versions: int = Field(default=50, ge=1)
    keep_recent_concept_versions: int = Field(default=15, ge=0)
    max_substep_results: int = Field(default=50, ge=1)
    keep_recent_substep_results: int = Field(default=15, ge=0)

    # Workflow behaviour
    auto_advance: bool = True
    auto_clarification: bool = True

    # Remote stage executor
    executor_base_url: str = "http://localhost:5000"
    executor_timeout_s: float = 600.0
    report_id: str | None = None

    @property
    def resolved_config_dir(self) -> Path:
        return self.config_dir or (self.repo_root / "config")

    @property
    def default_catalog_file(self) -> Path:
        return self.resolved_config_dir / "workflow_stages.yaml"


# Singleton instance - import this instead of creating Settings()
settings = Settings()
