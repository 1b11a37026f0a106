"""Configuration models for qamap."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from qamap.models.coverage import CoverageGoals

GENERATOR_KINDS = ("smoke", "form", "journey", "crud", "a11y")


class MappingConfig(BaseModel):
    max_depth: int = 3
    max_pages: int = 50
    timeout_ms: int = 30000
    wait_until: str = "networkidle"  # networkidle, load, domcontentloaded
    capture_screenshots: bool = True
    deep_form_extraction: bool = True
    headless: bool = True


class GenerationConfig(BaseModel):
    scenario_types: list[str] = Field(default_factory=lambda: ["smoke", "form", "journey"])
    coverage_targets: CoverageGoals = Field(default_factory=CoverageGoals.defaults)
    max_tests: int = 500
    seed: int = 42
    max_journey_steps: int = 5
    max_journeys: int = 25
    include_invalid: bool = True
    include_boundary: bool = True

    @field_validator("scenario_types")
    @classmethod
    def known_kinds(cls, v: list[str]) -> list[str]:
        unknown = [k for k in v if k not in GENERATOR_KINDS]
        if unknown:
            raise ValueError(f"Unknown scenario types: {', '.join(unknown)}")
        return v


class ExecutionConfig(BaseModel):
    runner: str = "playwright"  # playwright, selenium
    browser: str = "chromium"
    headless: bool = True
    parallel: bool = False
    workers: int = 4
    retries: int = 2
    timeout_ms: int = 30000
    screenshot_on_fail: bool = True
    selenium_remote_url: Optional[str] = None


class LearningConfig(BaseModel):
    enabled: bool = True
    auto_heal: bool = True
    kb_path: str = ".qamap/knowledge-base.db"
    flaky_threshold: float = 0.1


class AuthConfig(BaseModel):
    strategy: str  # cookie, local_storage, login_form, custom
    login_url: str = ""
    username: str = ""
    password: str = ""
    username_selector: str = (
        'input[type="text"], input[type="email"], input[name="username"], input[name="email"]'
    )
    password_selector: str = 'input[type="password"]'
    submit_selector: str = 'button[type="submit"], input[type="submit"]'
    wait_timeout_ms: int = 10000
    cookies: list[dict] = Field(default_factory=list)
    token: str = ""
    storage_key: str = "authToken"
    script_path: str = ""

    @field_validator("strategy")
    @classmethod
    def known_strategy(cls, v: str) -> str:
        if v not in ("cookie", "local_storage", "login_form", "custom"):
            raise ValueError(f"Unknown auth strategy: {v}")
        return v

    @field_validator("password", "token", mode="before")
    @classmethod
    def resolve_env_secret(cls, v: str) -> str:
        if isinstance(v, str) and v.startswith("env:"):
            env_var = v[4:]
            resolved = os.environ.get(env_var)
            if resolved is None:
                raise ValueError(f"Environment variable '{env_var}' not set")
            return resolved
        return v


class QAMapConfig(BaseModel):
    # Target
    base_url: str
    app_name: str = ""

    # Authentication
    auth: Optional[AuthConfig] = None

    mapping: MappingConfig = Field(default_factory=MappingConfig)
    generation: GenerationConfig = Field(default_factory=GenerationConfig)
    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)
    learning: LearningConfig = Field(default_factory=LearningConfig)

    # Where graphs, plans, reports and screenshots live
    work_dir: str = ".qamap"

    def model_post_init(self, __context) -> None:
        if not self.app_name:
            self.app_name = self.base_url

    @classmethod
    def load(cls, path: str | Path) -> "QAMapConfig":
        """Load config from a JSON file."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        with open(path) as f:
            data = json.load(f)
        return cls(**data)

    def save(self, path: str | Path) -> None:
        """Save config to a JSON file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(self.model_dump(), f, indent=2)
