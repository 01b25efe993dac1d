"""Configuration models for the visual regression harness."""

from __future__ import annotations

import logging
import os
from enum import Enum
from pathlib import Path
from typing import Mapping, Optional

from pydantic import BaseModel, Field, field_validator

from vrt.errors import ConfigurationError, MissingCredentialsError

logger = logging.getLogger(__name__)

DEFAULT_TUNNEL_IDENTIFIER = "react-app-tunnel"
DEFAULT_PERCY_CLI_API = "http://localhost:5338"


class ComparisonMode(str, Enum):
    LOCAL = "local"
    PERCY = "percy"
    SMARTUI = "smartui"


def _flag(environ: Mapping[str, str], name: str) -> bool:
    return environ.get(name, "").strip().lower() == "true"


def _seconds(environ: Mapping[str, str], name: str, default: float) -> float:
    raw = environ.get(name)
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number of seconds, got {raw!r}") from None
    if value <= 0:
        raise ConfigurationError(f"{name} must be positive, got {raw!r}")
    return value


class ScreenshotDirs(BaseModel):
    screenshots_dir: str = "screenshots"
    baseline_dir: str = "baseline"
    actual_dir: str = "actual"
    diff_dir: str = "diff"

    def root(self, base: Path | None = None) -> Path:
        return (base or Path.cwd()) / self.screenshots_dir


class PercySettings(BaseModel):
    enabled: bool = False
    token: Optional[str] = None
    cli_api: str = DEFAULT_PERCY_CLI_API
    widths: list[int] = Field(default_factory=lambda: [375, 1280])
    min_height: int = 1024
    enable_javascript: bool = True


class SmartUISettings(BaseModel):
    enabled: bool = False
    username: Optional[str] = None
    access_key: Optional[str] = None
    project_name: str = "react-app-screenshots"
    upload_timeout_seconds: float = 120.0


class BrowserStackSettings(BaseModel):
    username: Optional[str] = None
    access_key: Optional[str] = None
    local_identifier: str = DEFAULT_TUNNEL_IDENTIFIER
    tunnel_start_timeout: float = 60.0

    @field_validator("tunnel_start_timeout")
    @classmethod
    def positive_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("Tunnel start timeout must be positive")
        return v


class GridSettings(BaseModel):
    use_browserstack: bool = False
    use_lambdatest: bool = False
    use_local_tunnel: bool = False
    browser: Optional[str] = None

    def check_tunnel(self) -> None:
        """The managed tunnel is BrowserStack Local; LambdaTest sessions cannot use it."""
        if self.use_lambdatest and not self.use_browserstack and self.use_local_tunnel:
            raise ConfigurationError(
                "USE_LOCAL_TUNNEL is only supported with USE_BROWSERSTACK_GRID; "
                "LambdaTest sessions cannot reach the BrowserStack Local tunnel"
            )


class HarnessConfig(BaseModel):
    # Page under test
    base_url: str = "http://localhost:3000"

    # Local comparison
    screenshots: ScreenshotDirs = Field(default_factory=ScreenshotDirs)
    diff_threshold: float = 0.2
    update_screenshots: bool = False

    # Remote review services
    percy: PercySettings = Field(default_factory=PercySettings)
    smartui: SmartUISettings = Field(default_factory=SmartUISettings)

    # Grids and tunnel
    browserstack: BrowserStackSettings = Field(default_factory=BrowserStackSettings)
    grid: GridSettings = Field(default_factory=GridSettings)

    @field_validator("diff_threshold")
    @classmethod
    def threshold_in_range(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError("diff_threshold must be between 0 and 1")
        return v

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "HarnessConfig":
        """Build a config from environment variables."""
        env = os.environ if environ is None else environ
        config = cls(
            base_url=env.get("BASE_URL") or "http://localhost:3000",
            screenshots=ScreenshotDirs(
                screenshots_dir=env.get("SCREENSHOTS_DIR") or "screenshots",
                baseline_dir=env.get("BASELINE_DIR") or "baseline",
                actual_dir=env.get("ACTUAL_DIR") or "actual",
                diff_dir=env.get("DIFF_DIR") or "diff",
            ),
            update_screenshots=_flag(env, "UPDATE_SCREENSHOTS"),
            percy=PercySettings(
                enabled=_flag(env, "USE_PERCY"),
                token=env.get("PERCY_TOKEN") or None,
                cli_api=env.get("PERCY_CLI_API") or DEFAULT_PERCY_CLI_API,
            ),
            smartui=SmartUISettings(
                enabled=_flag(env, "USE_SMARTUI"),
                username=env.get("LT_USERNAME") or None,
                access_key=env.get("LT_ACCESS_KEY") or None,
                project_name=env.get("SMARTUI_PROJECT_NAME") or "react-app-screenshots",
            ),
            browserstack=BrowserStackSettings(
                username=env.get("BROWSERSTACK_USERNAME") or None,
                access_key=env.get("BROWSERSTACK_ACCESS_KEY") or None,
                local_identifier=env.get("BROWSERSTACK_LOCAL_IDENTIFIER") or DEFAULT_TUNNEL_IDENTIFIER,
                tunnel_start_timeout=_seconds(env, "TUNNEL_START_TIMEOUT", 60.0),
            ),
            grid=GridSettings(
                use_browserstack=_flag(env, "USE_BROWSERSTACK_GRID"),
                use_lambdatest=_flag(env, "USE_LAMBDATEST_GRID"),
                use_local_tunnel=_flag(env, "USE_LOCAL_TUNNEL"),
                browser=env.get("GRID_BROWSER") or None,
            ),
        )
        config.grid.check_tunnel()
        return config

    def resolve_mode(self) -> ComparisonMode:
        """Pick the comparison backend. Percy wins over SmartUI, SmartUI over local."""
        if self.percy.enabled and self.smartui.enabled:
            logger.warning("Both USE_PERCY and USE_SMARTUI are set; using Percy")
        if self.percy.enabled:
            return ComparisonMode.PERCY
        if self.smartui.enabled:
            return ComparisonMode.SMARTUI
        return ComparisonMode.LOCAL

    def require_percy_credentials(self) -> str:
        if not self.percy.token:
            raise MissingCredentialsError("Percy", ["PERCY_TOKEN"])
        return self.percy.token

    def require_lambdatest_credentials(self) -> tuple[str, str]:
        if not self.smartui.username or not self.smartui.access_key:
            raise MissingCredentialsError("LambdaTest", ["LT_USERNAME", "LT_ACCESS_KEY"])
        return self.smartui.username, self.smartui.access_key

    def require_browserstack_credentials(self) -> tuple[str, str]:
        if not self.browserstack.username or not self.browserstack.access_key:
            raise MissingCredentialsError(
                "BrowserStack", ["BROWSERSTACK_USERNAME", "BROWSERSTACK_ACCESS_KEY"]
            )
        return self.browserstack.username, self.browserstack.access_key
