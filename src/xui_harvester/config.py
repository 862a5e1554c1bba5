"""Shared configuration contracts and validation helpers for xui-harvester."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
import os
from pathlib import Path
from typing import Any

from platformdirs import user_config_dir, user_data_dir

from .errors import ConfigError

APP_NAME = "xui-harvester"
CONFIG_ENV_VAR = "XUI_HARVEST_CONFIG"
VALID_OUTPUT_FORMATS = {"pretty", "plain", "json", "jsonl"}
VALID_BROWSER_ENGINES = {"chromium", "firefox", "webkit"}
DEFAULT_CONFIG_FILENAME = "config.toml"
DEFAULT_STATE_FILENAME = "state.db"

MIN_SCROLL_STEP_PX = 200
MAX_SCROLL_STEP_PX = 6000
MIN_TRANSLATION_WAIT_MS = 10_000
MAX_TRANSLATION_WAIT_MS = 15_000

DEFAULT_CONFIG_TEMPLATE = """[app]
default_format = "pretty"
debug = false
# state_path = "/path/to/state.db"

[browser]
engine = "chromium"
headless = true
navigation_timeout_ms = 30000
action_timeout_ms = 10000
viewport_width = 1280
viewport_height = 900
locale = "en-US"
# storage_state = "/path/to/storage_state.json"

[crawl]
tick_ms = 600
scroll_step_px = 1200
auto_stop = true
max_no_new_ticks = 12
end_marker_ticks = 4
pause_after_ticks = 2
pause_threshold_ms = 1100
load_wait_timeout_ms = 10000
load_poll_ms = 100
status_initial_delay_ms = 2000

[translation]
# Hold posts back until the translation overlay has attached.
wait_for_overlay = false
wait_ms = 15000
poll_ms = 50
max_attempts = 25
stale_multiplier = 3
min_wait_ms = 1200

[checkpoint]
remember_ids = true
save_debounce_ms = 900

[search]
max_targets = 50
collect_max_ticks = 300
collect_stall_ticks = 20
"""


@dataclass(frozen=True)
class AppConfig:
    default_format: str = "pretty"
    debug: bool = False
    state_path: str | None = None


@dataclass(frozen=True)
class BrowserConfig:
    engine: str = "chromium"
    headless: bool = True
    navigation_timeout_ms: int = 30_000
    action_timeout_ms: int = 10_000
    viewport_width: int = 1280
    viewport_height: int = 900
    locale: str = "en-US"
    storage_state: str | None = None


@dataclass(frozen=True)
class CrawlConfig:
    tick_ms: int = 600
    scroll_step_px: int = 1200
    auto_stop: bool = True
    max_no_new_ticks: int = 12
    end_marker_ticks: int = 4
    pause_after_ticks: int = 2
    pause_threshold_ms: int = 1100
    load_wait_timeout_ms: int = 10_000
    load_poll_ms: int = 100
    status_initial_delay_ms: int = 2000


@dataclass(frozen=True)
class TranslationConfig:
    wait_for_overlay: bool = False
    wait_ms: int = 15_000
    poll_ms: int = 50
    max_attempts: int = 25
    stale_multiplier: int = 3
    min_wait_ms: int = 1200


@dataclass(frozen=True)
class CheckpointConfig:
    remember_ids: bool = True
    save_debounce_ms: int = 900


@dataclass(frozen=True)
class SearchConfig:
    max_targets: int = 50
    collect_max_ticks: int = 300
    collect_stall_ticks: int = 20


@dataclass(frozen=True)
class RuntimeConfig:
    app: AppConfig = field(default_factory=AppConfig)
    browser: BrowserConfig = field(default_factory=BrowserConfig)
    crawl: CrawlConfig = field(default_factory=CrawlConfig)
    translation: TranslationConfig = field(default_factory=TranslationConfig)
    checkpoint: CheckpointConfig = field(default_factory=CheckpointConfig)
    search: SearchConfig = field(default_factory=SearchConfig)


def default_config() -> RuntimeConfig:
    return RuntimeConfig()


def default_config_toml() -> str:
    return DEFAULT_CONFIG_TEMPLATE


def resolve_config_path(config_path: str | Path | None = None) -> Path:
    if config_path:
        return Path(config_path).expanduser()

    env_value = os.getenv(CONFIG_ENV_VAR)
    if env_value:
        return Path(env_value).expanduser()

    config_dir = Path(user_config_dir(APP_NAME, appauthor=False))
    return config_dir / DEFAULT_CONFIG_FILENAME


def resolve_state_path(config: RuntimeConfig) -> Path:
    if config.app.state_path:
        return Path(config.app.state_path).expanduser()
    return Path(user_data_dir(APP_NAME, appauthor=False)) / DEFAULT_STATE_FILENAME


def init_default_config(config_path: str | Path | None = None, force: bool = False) -> Path:
    path = resolve_config_path(config_path)
    if path.exists() and path.is_dir():
        raise ConfigError(
            f"Config path '{path}' is a directory; expected a TOML file path (for example '{path / DEFAULT_CONFIG_FILENAME}')."
        )
    if path.exists() and not force:
        raise ConfigError(
            f"Config file already exists at '{path}'. Re-run with --force to overwrite."
        )

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(default_config_toml(), encoding="utf-8")
    except OSError as exc:
        raise ConfigError(
            f"Could not write config file at '{path}': {exc}. "
            "Check path permissions or choose a writable location with `--config`."
        ) from exc
    return path


def load_runtime_config(config_path: str | Path | None = None) -> RuntimeConfig:
    """Load and validate config, falling back to defaults when no file exists."""
    path = resolve_config_path(config_path)
    if not path.exists():
        if config_path:
            raise ConfigError(
                f"Config file not found at '{path}'. Run `xui-harvest config init --config \"{path}\"` to generate defaults."
            )
        return default_config()
    if path.is_dir():
        raise ConfigError(
            f"Config path '{path}' is a directory; pass a file path ending in '{DEFAULT_CONFIG_FILENAME}'."
        )

    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(
            f"Could not read config file '{path}': {exc}. "
            "Check file permissions and that the path points to a readable TOML file."
        ) from exc
    raw = _load_toml(text, path)
    return parse_runtime_config(raw)


def config_to_dict(config: RuntimeConfig) -> dict[str, Any]:
    return asdict(config)


def _load_toml(text: str, path: Path) -> dict[str, Any]:
    try:
        import tomllib  # Python 3.11+
    except ModuleNotFoundError:
        try:
            import tomli as tomllib  # type: ignore[no-redef]
        except ModuleNotFoundError as exc:
            raise ConfigError(
                "TOML parsing requires Python 3.11+ or `tomli` installed. "
                f"Could not parse config file '{path}'."
            ) from exc

    try:
        data = tomllib.loads(text)
    except Exception as exc:
        raise ConfigError(
            f"Config file '{path}' contains invalid TOML: {exc}. "
            "Fix the syntax or regenerate defaults with `xui-harvest config init --force`."
        ) from exc

    if not isinstance(data, dict):
        raise ConfigError(f"Config file '{path}' must parse to a TOML table.")
    return data


def parse_runtime_config(data: dict[str, Any]) -> RuntimeConfig:
    app_raw = _expect_table(data, "app", default={})
    browser_raw = _expect_table(data, "browser", default={})
    crawl_raw = _expect_table(data, "crawl", default={})
    translation_raw = _expect_table(data, "translation", default={})
    checkpoint_raw = _expect_table(data, "checkpoint", default={})
    search_raw = _expect_table(data, "search", default={})

    app_config = AppConfig(
        default_format=_expect_choice(
            app_raw,
            "app.default_format",
            default="pretty",
            valid_values=VALID_OUTPUT_FORMATS,
        ),
        debug=_expect_bool(app_raw, "app.debug", default=False),
        state_path=_expect_optional_string(app_raw, "app.state_path"),
    )

    browser_config = BrowserConfig(
        engine=_expect_choice(
            browser_raw,
            "browser.engine",
            default="chromium",
            valid_values=VALID_BROWSER_ENGINES,
        ),
        headless=_expect_bool(browser_raw, "browser.headless", default=True),
        navigation_timeout_ms=_expect_positive_int(
            browser_raw, "browser.navigation_timeout_ms", default=30_000
        ),
        action_timeout_ms=_expect_positive_int(browser_raw, "browser.action_timeout_ms", default=10_000),
        viewport_width=_expect_positive_int(browser_raw, "browser.viewport_width", default=1280),
        viewport_height=_expect_positive_int(browser_raw, "browser.viewport_height", default=900),
        locale=_expect_non_empty_string(browser_raw, "browser.locale", "en-US"),
        storage_state=_expect_optional_string(browser_raw, "browser.storage_state"),
    )

    crawl_config = CrawlConfig(
        tick_ms=_expect_positive_int(crawl_raw, "crawl.tick_ms", default=600),
        scroll_step_px=_expect_clamped_int(
            crawl_raw,
            "crawl.scroll_step_px",
            default=1200,
            minimum=MIN_SCROLL_STEP_PX,
            maximum=MAX_SCROLL_STEP_PX,
        ),
        auto_stop=_expect_bool(crawl_raw, "crawl.auto_stop", default=True),
        max_no_new_ticks=_expect_positive_int(crawl_raw, "crawl.max_no_new_ticks", default=12),
        end_marker_ticks=_expect_positive_int(crawl_raw, "crawl.end_marker_ticks", default=4),
        pause_after_ticks=_expect_positive_int(crawl_raw, "crawl.pause_after_ticks", default=2),
        pause_threshold_ms=_expect_positive_int(crawl_raw, "crawl.pause_threshold_ms", default=1100),
        load_wait_timeout_ms=_expect_positive_int(
            crawl_raw, "crawl.load_wait_timeout_ms", default=10_000
        ),
        load_poll_ms=_expect_positive_int(crawl_raw, "crawl.load_poll_ms", default=100),
        status_initial_delay_ms=_expect_non_negative_int(
            crawl_raw, "crawl.status_initial_delay_ms", default=2000
        ),
    )

    translation_config = TranslationConfig(
        wait_for_overlay=_expect_bool(translation_raw, "translation.wait_for_overlay", default=False),
        wait_ms=_expect_clamped_int(
            translation_raw,
            "translation.wait_ms",
            default=15_000,
            minimum=MIN_TRANSLATION_WAIT_MS,
            maximum=MAX_TRANSLATION_WAIT_MS,
        ),
        poll_ms=_expect_positive_int(translation_raw, "translation.poll_ms", default=50),
        max_attempts=_expect_positive_int(translation_raw, "translation.max_attempts", default=25),
        stale_multiplier=_expect_positive_int(
            translation_raw, "translation.stale_multiplier", default=3
        ),
        min_wait_ms=_expect_positive_int(translation_raw, "translation.min_wait_ms", default=1200),
    )

    checkpoint_config = CheckpointConfig(
        remember_ids=_expect_bool(checkpoint_raw, "checkpoint.remember_ids", default=True),
        save_debounce_ms=_expect_non_negative_int(
            checkpoint_raw, "checkpoint.save_debounce_ms", default=900
        ),
    )

    search_config = SearchConfig(
        max_targets=_expect_positive_int(search_raw, "search.max_targets", default=50),
        collect_max_ticks=_expect_positive_int(search_raw, "search.collect_max_ticks", default=300),
        collect_stall_ticks=_expect_positive_int(
            search_raw, "search.collect_stall_ticks", default=20
        ),
    )

    return RuntimeConfig(
        app=app_config,
        browser=browser_config,
        crawl=crawl_config,
        translation=translation_config,
        checkpoint=checkpoint_config,
        search=search_config,
    )


def _expect_table(data: dict[str, Any], key: str, default: dict[str, Any]) -> dict[str, Any]:
    value = data.get(key, default)
    if not isinstance(value, dict):
        raise ConfigError(f"Invalid [{key}] table: expected table, got {type(value).__name__}.")
    return value


def _expect_non_empty_string(
    data: dict[str, Any], key: str, default: str | None
) -> str:
    if key.split(".")[-1] in data:
        value = data[key.split(".")[-1]]
    else:
        if default is None:
            raise ConfigError(f"Missing required value '{key}'.")
        value = default

    if not isinstance(value, str) or not value.strip():
        raise ConfigError(f"Invalid value for '{key}': expected non-empty string.")
    return value


def _expect_optional_string(data: dict[str, Any], key: str) -> str | None:
    field = key.split(".")[-1]
    if field not in data:
        return None
    return _expect_non_empty_string(data, key, default=None)


def _expect_positive_int(data: dict[str, Any], key: str, default: int) -> int:
    field = key.split(".")[-1]
    value = data.get(field, default)
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ConfigError(f"Invalid value for '{key}': expected positive integer.")
    return value


def _expect_non_negative_int(data: dict[str, Any], key: str, default: int) -> int:
    field = key.split(".")[-1]
    value = data.get(field, default)
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ConfigError(f"Invalid value for '{key}': expected integer >= 0.")
    return value


def _expect_clamped_int(
    data: dict[str, Any],
    key: str,
    default: int,
    *,
    minimum: int,
    maximum: int,
) -> int:
    value = _expect_positive_int(data, key, default)
    return max(minimum, min(maximum, value))


def _expect_bool(data: dict[str, Any], key: str, default: bool) -> bool:
    field = key.split(".")[-1]
    value = data.get(field, default)
    if not isinstance(value, bool):
        raise ConfigError(f"Invalid value for '{key}': expected boolean true/false.")
    return value


def _expect_choice(
    data: dict[str, Any],
    key: str,
    default: str | None,
    valid_values: set[str],
) -> str:
    field = key.split(".")[-1]
    if field in data:
        value = data[field]
    else:
        if default is None:
            raise ConfigError(f"Missing required value '{key}'.")
        value = default

    if not isinstance(value, str) or value not in valid_values:
        choices = ", ".join(sorted(valid_values))
        raise ConfigError(f"Invalid value for '{key}': expected one of [{choices}].")
    return value
