"""
Typed configuration model with precedence-based loader.

Precedence (lowest to highest):
    defaults < config file (YAML) < env vars < CLI flags
"""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml


def default_config_dir() -> Path:
    """``$XDG_CONFIG_HOME/chatloop``, falling back to ``~/.config/chatloop``."""
    base = os.environ.get("XDG_CONFIG_HOME") or str(Path.home() / ".config")
    return Path(base) / "chatloop"


# ---------------------------------------------------------------------------
# Section dataclasses
# ---------------------------------------------------------------------------

@dataclass
class LLMConfig:
    api_base: str = "https://api.githubcopilot.com"
    model: str = "gpt-4o"
    temperature: float = 0.7
    max_tokens: int = 1000
    timeout_seconds: float = 120.0
    stream: bool = True
    editor_version: str = "vscode/1.99.3"
    editor_plugin_version: str = "copilot-chat/0.26.7"


@dataclass
class AuthConfig:
    provider_key: str = "github-copilot"
    client_id: str = "Iv1.b507a08c87ecfe98"
    scope: str = "read:user"
    device_code_url: str = "https://github.com/login/device/code"
    access_token_url: str = "https://github.com/login/oauth/access_token"
    token_url: str = "https://api.github.com/copilot_internal/v2/token"
    user_agent: str = "GitHubCopilotChat/0.26.7"
    max_poll_attempts: int = 120
    timeout_seconds: float = 30.0
    credentials_path: str = field(
        default_factory=lambda: str(default_config_dir() / "auth.json")
    )


@dataclass
class ChatConfig:
    max_tool_passes: int = 4
    tool_timeout_seconds: float = 30.0
    system_prompt: str = ""
    read_file_max_bytes: int = 256 * 1024


@dataclass
class LoggingConfig:
    level: str = "WARNING"
    file: str = ""


# ---------------------------------------------------------------------------
# Root config
# ---------------------------------------------------------------------------

@dataclass
class ChatloopConfig:
    llm: LLMConfig = field(default_factory=LLMConfig)
    auth: AuthConfig = field(default_factory=AuthConfig)
    chat: ChatConfig = field(default_factory=ChatConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def to_dict(self) -> dict:
        return asdict(self)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _apply_dotpath(obj: Any, dotpath: str, value: Any) -> None:
    """Walk obj via dotpath and set the final attribute."""
    parts = dotpath.split(".")
    for part in parts[:-1]:
        obj = getattr(obj, part)
    setattr(obj, parts[-1], value)


def _coerce(value: str, target_type: type) -> Any:
    """Coerce a string env value to the target type."""
    if target_type is bool:
        return value.lower() in ("1", "true", "yes", "on")
    if target_type is int:
        return int(value)
    if target_type is float:
        return float(value)
    return value


def _build_section(cls: type, raw: Any) -> Any:
    """Build a dataclass section from a raw dict, ignoring unknown keys."""
    if not isinstance(raw, dict):
        return cls()
    valid_fields = {f.name for f in fields(cls)}
    filtered = {k: v for k, v in raw.items() if k in valid_fields}
    return cls(**filtered)


# ---------------------------------------------------------------------------
# ENV var mapping
# ---------------------------------------------------------------------------

_ENV_MAP: dict[str, tuple[str, type]] = {
    "CHATLOOP_LLM_API_BASE":            ("llm.api_base", str),
    "CHATLOOP_LLM_MODEL":               ("llm.model", str),
    "CHATLOOP_LLM_TEMPERATURE":         ("llm.temperature", float),
    "CHATLOOP_LLM_MAX_TOKENS":          ("llm.max_tokens", int),
    "CHATLOOP_LLM_TIMEOUT":             ("llm.timeout_seconds", float),
    "CHATLOOP_LLM_STREAM":              ("llm.stream", bool),
    "CHATLOOP_AUTH_CLIENT_ID":          ("auth.client_id", str),
    "CHATLOOP_AUTH_MAX_POLL_ATTEMPTS":  ("auth.max_poll_attempts", int),
    "CHATLOOP_AUTH_CREDENTIALS_PATH":   ("auth.credentials_path", str),
    "CHATLOOP_CHAT_MAX_TOOL_PASSES":    ("chat.max_tool_passes", int),
    "CHATLOOP_CHAT_TOOL_TIMEOUT":       ("chat.tool_timeout_seconds", float),
    "CHATLOOP_CHAT_SYSTEM_PROMPT":      ("chat.system_prompt", str),
    "CHATLOOP_LOGGING_LEVEL":           ("logging.level", str),
    "CHATLOOP_LOGGING_FILE":            ("logging.file", str),
}


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------

def find_config_path() -> Path | None:
    """Find a config file in the standard locations."""
    candidates = [
        Path.cwd() / "chatloop.yaml",
        Path.cwd() / "chatloop.yml",
        default_config_dir() / "config.yaml",
        Path.home() / ".chatloop" / "config.yaml",
    ]
    for p in candidates:
        if p.is_file():
            return p
    return None


def load_config(
    config_path: str | Path | None = None,
    *,
    cli_overrides: dict[str, Any] | None = None,
) -> ChatloopConfig:
    """
    Build a ChatloopConfig by layering sources in precedence order:

        defaults  <  config file  <  env vars  <  CLI flags

    Parameters
    ----------
    config_path : path to YAML config file (optional)
    cli_overrides : dict of dotpath -> value CLI flag overrides
    """
    raw: dict[str, Any] = {}

    # --- 1. Config file ---
    if config_path is not None:
        p = Path(config_path).expanduser()
        if p.is_file():
            with p.open("r", encoding="utf-8") as f:
                raw = yaml.safe_load(f) or {}
            if not isinstance(raw, dict):
                raise ValueError(f"Config file {p} must contain a mapping")

    cfg = ChatloopConfig(
        llm=_build_section(LLMConfig, raw.get("llm", {})),
        auth=_build_section(AuthConfig, raw.get("auth", {})),
        chat=_build_section(ChatConfig, raw.get("chat", {})),
        logging=_build_section(LoggingConfig, raw.get("logging", {})),
    )

    # --- 2. Env var overrides ---
    for env_var, (dotpath, target_type) in _ENV_MAP.items():
        val = os.environ.get(env_var)
        if val is not None:
            _apply_dotpath(cfg, dotpath, _coerce(val, target_type))

    # --- 3. CLI flag overrides ---
    if cli_overrides:
        for dotpath, value in cli_overrides.items():
            if value is not None:
                _apply_dotpath(cfg, dotpath, value)

    return cfg
