"""Settings via pydantic-settings with DADGPT_ env prefix.

Provider credentials use validation_alias to read the same unprefixed env
vars (ANTHROPIC_API_KEY, OPENAI_API_KEY) the provider SDKs use, so a single
.env file works for every tool that talks to the provider.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_MODELS: dict[str, str] = {
    "anthropic": "claude-sonnet-4-20250514",
    "openai": "gpt-4o",
}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="DADGPT_", env_file=".env")

    # Storage root: DADGPT_DATA_DIR wins over DADGPT_HOME/data
    home: Path = Field(default_factory=lambda: Path.home() / ".dadgpt")
    data_dir: Path | None = None

    log_level: str = "info"

    # Provider
    provider: Literal["anthropic", "openai"] = "anthropic"
    model: str = ""
    max_tokens: int = 4096
    anthropic_api_key: str = Field("", validation_alias="ANTHROPIC_API_KEY")
    anthropic_auth_token: str = Field("", validation_alias="ANTHROPIC_AUTH_TOKEN")
    openai_api_key: str = Field("", validation_alias="OPENAI_API_KEY")
    anthropic_base_url: str = "https://api.anthropic.com"
    openai_base_url: str = "https://api.openai.com"
    api_timeout_connect: int = 10  # seconds
    api_timeout_read: int = 120  # seconds

    # Agent loop
    max_iterations: int = 10
    working_directory: str = Field(default_factory=lambda: str(Path.cwd()))
    interactive: bool = False  # False: "ask" decisions resolve to deny

    # Permission ruleset, "<capability>:<resource>" globs
    permission_allow: list[str] = ["read:*", "goal", "todo", "project", "family", "review"]
    permission_deny: list[str] = []
    permission_ask: list[str] = ["write:*", "bash:*"]

    goal_categories: list[str] = ["Health", "Family", "Work", "Personal", "Finance"]

    # Runtime
    host: str = "127.0.0.1"
    port: int = 8000

    @model_validator(mode="after")
    def _validate_agent(self) -> "Settings":
        if self.max_iterations < 1:
            raise ValueError("max_iterations must be >= 1")
        if not self.model:
            self.model = DEFAULT_MODELS[self.provider]
        if self.data_dir is None:
            self.data_dir = self.home / "data"
        return self

    @property
    def api_key(self) -> str:
        """Credential for the configured provider."""
        if self.provider == "openai":
            return self.openai_api_key
        return self.anthropic_auth_token or self.anthropic_api_key
