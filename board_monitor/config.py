"""
Configuration: YAML file + environment overrides → MonitorConfig.

The live config sits in a ConfigStore.  The operator command handler is its
only writer; every TaskTracker works on a snapshot taken when it was built,
so edits take effect on the next restart_monitoring() and never mid-cycle.
"""

import copy
import dataclasses
import logging
import os
import threading
from dataclasses import dataclass, field

import yaml

from board_monitor.utils import ROOT_DIR

logger = logging.getLogger("board_monitor")

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/124.0.0.0 Safari/537.36"
)


@dataclass
class MonitorConfig:
    target_board_url: str = ""

    # Assignment policy
    auto_assign: bool = True
    sprint_whitelist: list = field(default_factory=list)
    max_tasks: int = 4
    auth_required: bool = False

    # Board
    board_adapter: str = "tracker-v1"
    task_key_prefix: str = ""
    task_url_template: str = ""
    http_claim_url_template: str = ""

    # Browser
    headless: bool = False
    user_agent: str = DEFAULT_USER_AGENT
    user_data_dir: str = ""

    # Timing (seconds unless suffixed _ms)
    poll_interval: float = 10
    poll_jitter: float = 0
    error_delay: float = 15
    max_errors: int = 10
    auth_grace_seconds: float = 240
    recovery_attempts: int = 3
    recovery_delay: float = 10
    assign_pause: float = 1
    nav_timeout_ms: int = 30_000
    task_nav_timeout_ms: int = 8_000
    extract_timeout_ms: int = 30_000
    settle_ms: int = 2_000

    # Notifications
    telegram_bot_token: str = ""
    telegram_chat_id: str = ""
    command_polling: bool = True
    smtp_host: str = ""
    smtp_port: int = 465
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_recipient: str = ""

    # Health endpoint (0 disables)
    health_port: int = 3000
    log_level: str = "INFO"

    def copy(self) -> "MonitorConfig":
        return copy.deepcopy(self)


# ── Environment overrides ────────────────────────────────────────────────

def _env_bool_off(value: str) -> bool:
    """AUTO_ASSIGN style: anything but "0" means on."""
    return value.strip() != "0"


def _env_bool_on(value: str) -> bool:
    """AUTH / HEADLESS style: only "1"/"true"/"yes" means on."""
    return value.strip().lower() in ("1", "true", "yes")


def parse_whitelist(value) -> list:
    """Accept "19, 10" or ["19", 10] and return ["19", "10"] (blanks dropped)."""
    if value is None:
        return []
    if isinstance(value, str):
        items = value.split(",")
    else:
        items = list(value)
    return [str(item).strip() for item in items if str(item).strip()]


_ENV_OVERRIDES = {
    "TARGET_BOARD_URL":   ("target_board_url", str),
    "AUTO_ASSIGN":        ("auto_assign", _env_bool_off),
    "SPRINT_WHITELIST":   ("sprint_whitelist", parse_whitelist),
    "MAX_TASKS":          ("max_tasks", int),
    "AUTH":               ("auth_required", _env_bool_on),
    "HEADLESS":           ("headless", _env_bool_on),
    "USER_AGENT":         ("user_agent", str),
    "USER_DATA_DIR":      ("user_data_dir", str),
    "TELEGRAM_BOT_TOKEN": ("telegram_bot_token", str),
    "TELEGRAM_CHAT_ID":   ("telegram_chat_id", str),
    "SMTP_HOST":          ("smtp_host", str),
    "SMTP_PORT":          ("smtp_port", int),
    "SMTP_USER":          ("smtp_user", str),
    "SMTP_PASSWORD":      ("smtp_password", str),
    "SMTP_RECIPIENT":     ("smtp_recipient", str),
    "HEALTH_PORT":        ("health_port", int),
    "PORT":               ("health_port", int),
    "LOG_LEVEL":          ("log_level", str),
}


def validate_config(config: MonitorConfig) -> MonitorConfig:
    """Raise ValueError naming the offending key; return the config unchanged."""
    if not config.target_board_url:
        raise ValueError("Missing required config key: 'target_board_url'")
    if not str(config.target_board_url).startswith("http"):
        raise ValueError(f"target_board_url must be an http(s) URL, got: {config.target_board_url!r}")
    if not isinstance(config.max_tasks, int) or config.max_tasks < 0:
        raise ValueError(f"max_tasks must be an int >= 0, got: {config.max_tasks!r}")
    if not isinstance(config.max_errors, int) or config.max_errors < 1:
        raise ValueError(f"max_errors must be an int >= 1, got: {config.max_errors!r}")
    if not isinstance(config.recovery_attempts, int) or config.recovery_attempts < 1:
        raise ValueError(f"recovery_attempts must be an int >= 1, got: {config.recovery_attempts!r}")
    for key in ("poll_interval", "poll_jitter", "error_delay", "auth_grace_seconds", "recovery_delay"):
        value = getattr(config, key)
        if not isinstance(value, (int, float)) or value < 0:
            raise ValueError(f"{key} must be a number >= 0, got: {value!r}")
    return config


def load_config(config_path: str = None, environ=None) -> MonitorConfig:
    """
    Load config.yaml (if present), apply environment overrides, validate.

    An explicitly given path must exist; the default ./config.yaml is optional
    so a pure-environment deployment works too.
    """
    environ = os.environ if environ is None else environ
    explicit = config_path is not None
    if config_path is None:
        config_path = os.path.join(ROOT_DIR, "config.yaml")

    raw: dict = {}
    if os.path.exists(config_path):
        with open(config_path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
        if not isinstance(raw, dict):
            raise ValueError(f"Config file must contain a mapping: {config_path}")
    elif explicit:
        raise FileNotFoundError(f"Config file not found: {config_path}")

    known = {f.name for f in dataclasses.fields(MonitorConfig)}
    unknown = sorted(set(raw) - known)
    if unknown:
        logger.warning(f"Ignoring unknown config keys: {', '.join(unknown)}")

    values = {k: v for k, v in raw.items() if k in known}
    if "sprint_whitelist" in values:
        values["sprint_whitelist"] = parse_whitelist(values["sprint_whitelist"])

    for env_key, (attr, convert) in _ENV_OVERRIDES.items():
        if environ.get(env_key):
            try:
                values[attr] = convert(environ[env_key])
            except ValueError as e:
                raise ValueError(f"Invalid value for {env_key}: {environ[env_key]!r}") from e

    return validate_config(MonitorConfig(**values))


# ── Live store ───────────────────────────────────────────────────────────

class ConfigStore:
    """
    Holder of the live config.

    Single writer (the command handler) via update(); readers get deep
    copies from snapshot(), so a reader never observes a half-applied edit.
    """

    def __init__(self, config: MonitorConfig):
        self._config = config
        self._lock = threading.Lock()

    def snapshot(self) -> MonitorConfig:
        with self._lock:
            return self._config.copy()

    def update(self, **changes) -> MonitorConfig:
        """Apply *changes*, validate the result, and return the new snapshot."""
        with self._lock:
            candidate = dataclasses.replace(self._config.copy(), **changes)
            validate_config(candidate)
            self._config = candidate
            logger.info(f"Config updated: {', '.join(sorted(changes))}")
            return candidate.copy()
