"""
Configuration management for renderproxy.
Loads and validates settings from YAML files and environment variables.
"""

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field


class GeneralConfig(BaseModel):
    """General configuration."""

    project_name: str = "renderproxy"
    version: str = "0.1.0"
    log_level: str = "INFO"
    logs_dir: str | None = None  # None = stderr only
    json_logs: bool = True


class ServerConfig(BaseModel):
    """HTTP server configuration."""

    host: str = "0.0.0.0"
    port: int = 3000
    # Origin advertised in rewritten URLs. When unset, the origin of the
    # inbound request is used.
    public_origin: str | None = None


class BrowserConfig(BaseModel):
    """Rendering engine launch configuration.

    The deployment profile selects between a locally installed Chrome
    (``development``) and the bundled Chromium with container-friendly
    flags (``production``).
    """

    model_config = ConfigDict(extra="forbid")

    profile: Literal["development", "production"] = "development"
    executable_path: str | None = None
    executable_search_paths: list[str] = Field(
        default_factory=lambda: [
            "/usr/bin/google-chrome",
            "/usr/bin/chromium-browser",
            "/usr/bin/chromium",
            "/snap/bin/chromium",
        ]
    )
    headless: bool = True
    viewport_width: int = 1920
    viewport_height: int = 1080
    user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    )
    development_args: list[str] = Field(
        default_factory=lambda: [
            "--no-sandbox",
            "--disable-setuid-sandbox",
            "--disable-dev-shm-usage",
            "--disable-accelerated-2d-canvas",
            "--no-first-run",
            "--no-zygote",
            "--disable-gpu",
        ]
    )
    production_args: list[str] = Field(
        default_factory=lambda: [
            "--no-sandbox",
            "--disable-setuid-sandbox",
            "--disable-dev-shm-usage",
            "--no-first-run",
            "--no-zygote",
            "--single-process",
            "--disable-gpu",
            "--hide-scrollbars",
            "--mute-audio",
        ]
    )
    # Same-origin isolation must be off, otherwise the engine refuses the
    # proxy-origin URLs substituted into rewritten pages.
    hardening_args: list[str] = Field(
        default_factory=lambda: [
            "--disable-web-security",
            "--disable-features=IsolateOrigins,site-per-process",
            "--disable-site-isolation-trials",
        ]
    )
    bypass_csp: bool = True


class NavigationStepConfig(BaseModel):
    """One entry of the navigation fallback chain."""

    condition: Literal["networkidle", "networkquiet", "load", "domcontentloaded"]
    timeout: float


class NavigationConfig(BaseModel):
    """Navigation strategy configuration."""

    strategies: list[NavigationStepConfig] = Field(
        default_factory=lambda: [
            NavigationStepConfig(condition="networkidle", timeout=45.0),
            NavigationStepConfig(condition="networkquiet", timeout=45.0),
            NavigationStepConfig(condition="load", timeout=30.0),
            NavigationStepConfig(condition="domcontentloaded", timeout=20.0),
        ]
    )
    settle_delay: float = 2.5
    scroll_lazy_content: bool = True
    post_scroll_delay: float = 1.0
    # Bound on waiting for the DOM again after a client-side redirect
    content_timeout: float = 10.0
    # "networkquiet" commits once at most this many requests stay in flight
    # for quiet_period seconds.
    quiet_max_inflight: int = 2
    quiet_period: float = 0.5


class FetcherConfig(BaseModel):
    """Direct (non-rendering) fetcher configuration."""

    timeout: float = 10.0
    cache_max_age: int = 3600
    user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    )
    accept_language: str = "en-US,en;q=0.9"
    follow_redirects: bool = True


class ClassifierConfig(BaseModel):
    """URL classification data.

    Membership of every list here is deployment data: the heuristics are
    tuned per site mix and are expected to be overridden in settings.yaml.
    """

    script_extensions: list[str] = Field(default_factory=lambda: [".js", ".mjs", ".cjs"])
    stylesheet_extensions: list[str] = Field(default_factory=lambda: [".css"])
    image_extensions: list[str] = Field(
        default_factory=lambda: [
            ".png", ".jpg", ".jpeg", ".gif", ".webp", ".avif", ".svg", ".ico", ".bmp",
        ]
    )
    font_extensions: list[str] = Field(
        default_factory=lambda: [".woff", ".woff2", ".ttf", ".otf", ".eot"]
    )
    media_extensions: list[str] = Field(
        default_factory=lambda: [".mp4", ".webm", ".mp3", ".ogg", ".wav", ".m4a", ".mov"]
    )
    data_extensions: list[str] = Field(
        default_factory=lambda: [".json", ".xml", ".txt", ".csv", ".map", ".wasm"]
    )
    # Extension-less paths that still serve static resources
    resource_path_patterns: list[str] = Field(
        default_factory=lambda: [
            "/_next/static/",
            "/static/chunks/",
            "/_nuxt/",
            "/webpack/",
            "/chunk-",
            "/gtag/js",
            "/recaptcha/api",
            "/cdn-cgi/",
            "/wp-includes/js/",
        ]
    )
    api_path_patterns: list[str] = Field(
        default_factory=lambda: [
            "/api/",
            "/graphql",
            "/_next/data/",
            "/wp-json/",
            "/ajax/",
            "/rest/",
        ]
    )
    # Registered domains of ad/analytics hosts
    tracking_hosts: list[str] = Field(
        default_factory=lambda: [
            "doubleclick.net",
            "googlesyndication.com",
            "googleadservices.com",
            "google-analytics.com",
            "googletagmanager.com",
            "adnxs.com",
            "criteo.com",
            "hotjar.com",
            "mixpanel.com",
            "scorecardresearch.com",
            "quantserve.com",
        ]
    )
    # host[/path-prefix] entries identifying tracking beacons on hosts that
    # also serve legitimate content
    tracking_pixel_patterns: list[str] = Field(
        default_factory=lambda: [
            "facebook.com/tr",
            "bat.bing.com/action",
            "analytics.twitter.com/i/adsct",
            "px.ads.linkedin.com/collect",
        ]
    )


class InterceptorConfig(BaseModel):
    """In-browser request filter.

    Deliberately short: blocking fonts or all third-party hosts breaks
    legitimate rendering.
    """

    blocked_hosts: list[str] = Field(
        default_factory=lambda: [
            "doubleclick.net",
            "googleadservices.com",
            "google-analytics.com",
            "facebook.com/tr",
        ]
    )


class Settings(BaseModel):
    """Main settings container."""

    general: GeneralConfig = Field(default_factory=GeneralConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    browser: BrowserConfig = Field(default_factory=BrowserConfig)
    navigation: NavigationConfig = Field(default_factory=NavigationConfig)
    fetcher: FetcherConfig = Field(default_factory=FetcherConfig)
    classifier: ClassifierConfig = Field(default_factory=ClassifierConfig)
    interceptor: InterceptorConfig = Field(default_factory=InterceptorConfig)


def _deep_merge(base: dict, override: dict) -> dict:
    """Deep merge two dictionaries.

    Args:
        base: Base dictionary.
        override: Override dictionary.

    Returns:
        Merged dictionary.
    """
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _load_yaml_with_local_override(config_dir: Path, filename: str) -> dict[str, Any]:
    """Load a YAML config file, then apply overrides from local.yaml.

    local.yaml top-level keys correspond to config file names without the
    extension, e.g.::

        settings:
          navigation:
            settle_delay: 1.0

    Args:
        config_dir: Configuration directory path.
        filename: YAML filename (e.g., "settings.yaml").

    Returns:
        Merged configuration dictionary.
    """
    config: dict[str, Any] = {}

    base_path = config_dir / filename
    if base_path.exists():
        with open(base_path, encoding="utf-8") as f:
            config = yaml.safe_load(f) or {}

    local_path = config_dir / "local.yaml"
    if local_path.exists():
        with open(local_path, encoding="utf-8") as f:
            local_overrides = yaml.safe_load(f) or {}
        section_key = Path(filename).stem
        if section_key in local_overrides:
            config = _deep_merge(config, local_overrides[section_key])

    return config


def _apply_env_overrides(config: dict[str, Any]) -> dict[str, Any]:
    """Apply environment variable overrides.

    Environment variables should be prefixed with RENDERPROXY_ and use
    double underscores for nested keys.

    Example:
        RENDERPROXY_GENERAL__LOG_LEVEL=DEBUG

    Args:
        config: Configuration dictionary.

    Returns:
        Configuration with environment overrides.
    """
    prefix = "RENDERPROXY_"

    for key, value in os.environ.items():
        if not key.startswith(prefix) or key == "RENDERPROXY_CONFIG_DIR":
            continue

        key_path = key[len(prefix) :].lower().split("__")

        current = config
        for part in key_path[:-1]:
            if not isinstance(current.get(part), dict):
                current[part] = {}
            current = current[part]

        final_key = key_path[-1]
        try:
            if value.lower() in ("true", "false"):
                current[final_key] = value.lower() == "true"
            elif "." in value:
                current[final_key] = float(value)
            else:
                current[final_key] = int(value)
        except ValueError:
            current[final_key] = value

    return config


def get_config_dir() -> Path:
    """Get the configuration directory."""
    return Path(os.environ.get("RENDERPROXY_CONFIG_DIR", "config"))


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get application settings.

    Settings are loaded from:
    1. Default values
    2. config/settings.yaml (+ local.yaml overrides)
    3. Environment variables (highest priority)

    Returns:
        Settings instance.
    """
    config = _load_yaml_with_local_override(get_config_dir(), "settings.yaml")
    config = _apply_env_overrides(config)

    # CHROME_PATH is the conventional executable override for Chrome tooling;
    # an explicit executable_path (settings.yaml, local.yaml or env) wins
    chrome_path = os.environ.get("CHROME_PATH")
    browser = config["browser"] = config.get("browser") or {}
    if chrome_path and not browser.get("executable_path"):
        browser["executable_path"] = chrome_path

    return Settings(**config)


def get_project_root() -> Path:
    """Get the project root directory.

    Returns:
        Project root path.
    """
    return Path(__file__).parent.parent.parent
