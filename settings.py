"""Loading of the JSON settings file consumed by LLMClipTranslator."""

from __future__ import annotations

import json
import logging
import urllib.parse
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple, Union

from clipboard_monitor import DEFAULT_DOUBLE_COPY_GAP, DEFAULT_POLL_INTERVAL
from language_detector import LanguageConfig, make_config
from translation_service import ConfigurationError, Endpoint, ModelParameters


logger = logging.getLogger("llmcliptranslator.settings")

SETTINGS_FILE = Path.home() / ".llmcliptranslator_settings.json"

MODE_OFFLINE = "offline"
MODE_ONLINE = "online"

OFFLINE_HOST = "127.0.0.1"

DEFAULT_SETTINGS: Dict[str, Any] = {
    "languageCodes": ["ru", "en"],
    "languageDetectionRegexes": {},
    "mode": MODE_OFFLINE,
    "online": {"base_url": "", "api_key": "", "model": ""},
    "offline": {"port": 1234, "path": "/v1/chat/completions", "model": ""},
    "doubleCopyGapSeconds": DEFAULT_DOUBLE_COPY_GAP,
    "pollIntervalSeconds": DEFAULT_POLL_INTERVAL,
    "requestBody": {
        "temperature": 0.0,
        "max_tokens": 1024,
        "tool_choice": "none",
        "enable_thinking": False,
    },
    "requestTimeoutSeconds": 30.0,
    "maxLineLength": None,
    "fewShotExamplesFile": None,
    "discardStaleResults": False,
}

# Keys of ``requestBody`` that map onto ModelParameters; everything else is
# forwarded to the provider untouched, except ``stream`` which is always false.
_CORE_BODY_KEYS = ("temperature", "max_tokens", "tool_choice", "enable_thinking", "stream")


@dataclass(frozen=True)
class OfflineEndpointConfig:
    """Local OpenAI-compatible server such as LM Studio."""

    port: int = 1234
    path: str = "/v1/chat/completions"
    model: str = ""

    def resolve(self) -> Endpoint:
        if not 0 < self.port < 65536:
            raise ConfigurationError(f"Invalid offline port: {self.port}")
        path = self.path if self.path.startswith("/") else "/" + self.path
        return Endpoint(url=f"http://{OFFLINE_HOST}:{self.port}{path}", model=self.model or None)


@dataclass(frozen=True)
class OnlineEndpointConfig:
    """Remote provider reachable at a full chat-completions URL."""

    base_url: str = ""
    api_key: str = ""
    model: str = ""

    def resolve(self) -> Endpoint:
        url = self.base_url.strip()
        if not url:
            raise ConfigurationError("The online base_url is empty")
        parts = urllib.parse.urlsplit(url)
        if parts.scheme not in ("http", "https") or not parts.netloc:
            raise ConfigurationError(f"Invalid online base_url: {url!r}")
        return Endpoint(url=url, api_key=self.api_key or None, model=self.model or None)


EndpointConfig = Union[OfflineEndpointConfig, OnlineEndpointConfig]


@dataclass(frozen=True)
class Settings:
    language: LanguageConfig = field(default_factory=lambda: LanguageConfig(("ru", "en")))
    mode: str = MODE_OFFLINE
    offline: OfflineEndpointConfig = field(default_factory=OfflineEndpointConfig)
    online: OnlineEndpointConfig = field(default_factory=OnlineEndpointConfig)
    double_copy_gap: float = DEFAULT_DOUBLE_COPY_GAP
    poll_interval: float = DEFAULT_POLL_INTERVAL
    parameters: ModelParameters = field(default_factory=ModelParameters)
    request_timeout: float = 30.0
    max_line_length: Optional[int] = None
    few_shot_examples_file: Optional[Path] = None
    discard_stale_results: bool = False
    source_path: Optional[Path] = None

    @property
    def endpoint_config(self) -> EndpointConfig:
        return self.online if self.mode == MODE_ONLINE else self.offline

    def endpoint(self) -> Endpoint:
        """Resolve the selected connection mode into a request target."""

        return self.endpoint_config.resolve()

    def with_mode(self, mode: str) -> "Settings":
        if mode not in (MODE_OFFLINE, MODE_ONLINE):
            raise ValueError(f"Unknown connection mode: {mode!r}")
        return replace(self, mode=mode)


def _load_raw(path: Path) -> dict:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        logger.info("Settings file %s not found; using defaults", path)
        return {}
    except (json.JSONDecodeError, UnicodeDecodeError, OSError) as exc:
        logger.warning("Could not read settings from %s: %s", path, exc)
        return {}
    return data if isinstance(data, dict) else {}


def _number(value: Any, default: float, *, minimum: float = 0.0) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    return float(value) if value > minimum else default


def _string(value: Any, default: str = "") -> str:
    return value.strip() if isinstance(value, str) else default


def _section(data: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    value = data.get(key)
    return value if isinstance(value, dict) else {}


def _parse_language(data: Mapping[str, Any]) -> LanguageConfig:
    codes = data.get("languageCodes")
    if isinstance(codes, list):
        codes = [code.strip() for code in codes if isinstance(code, str) and code.strip()]
    else:
        codes = list(DEFAULT_SETTINGS["languageCodes"])

    patterns = {
        code: pattern
        for code, pattern in _section(data, "languageDetectionRegexes").items()
        if isinstance(code, str) and isinstance(pattern, str)
    }
    return make_config(codes, patterns)


def _parse_parameters(data: Mapping[str, Any]) -> ModelParameters:
    body = _section(data, "requestBody")
    defaults = DEFAULT_SETTINGS["requestBody"]

    temperature = body.get("temperature")
    if isinstance(temperature, bool) or not isinstance(temperature, (int, float)) or temperature < 0:
        temperature = defaults["temperature"]

    max_tokens = body.get("max_tokens")
    if isinstance(max_tokens, bool) or not isinstance(max_tokens, int) or max_tokens < 1:
        max_tokens = defaults["max_tokens"]

    enable_thinking = body.get("enable_thinking")
    if not isinstance(enable_thinking, bool):
        enable_thinking = defaults["enable_thinking"]

    extra = {key: value for key, value in body.items() if key not in _CORE_BODY_KEYS}
    return ModelParameters(
        temperature=float(temperature),
        max_tokens=max_tokens,
        tool_choice=_string(body.get("tool_choice"), defaults["tool_choice"]) or defaults["tool_choice"],
        enable_thinking=enable_thinking,
        extra_flags=extra,
    )


def _parse_offline(data: Mapping[str, Any]) -> OfflineEndpointConfig:
    section = _section(data, "offline")
    defaults = DEFAULT_SETTINGS["offline"]
    port = section.get("port")
    if isinstance(port, bool) or not isinstance(port, int):
        port = defaults["port"]
    return OfflineEndpointConfig(
        port=port,
        path=_string(section.get("path"), defaults["path"]) or defaults["path"],
        model=_string(section.get("model")),
    )


def _parse_online(data: Mapping[str, Any]) -> OnlineEndpointConfig:
    section = _section(data, "online")
    return OnlineEndpointConfig(
        base_url=_string(section.get("base_url")),
        api_key=_string(section.get("api_key")),
        model=_string(section.get("model")),
    )


def _parse_line_length(value: Any) -> Optional[int]:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        return None
    return value


def _parse_examples_path(value: Any, base_dir: Path) -> Optional[Path]:
    if not isinstance(value, str) or not value.strip():
        return None
    path = Path(value.strip()).expanduser()
    return path if path.is_absolute() else base_dir / path


def parse_settings(data: Mapping[str, Any], *, source_path: Optional[Path] = None) -> Settings:
    """Build :class:`Settings` from a decoded JSON object.

    Invalid values are ignored key by key and replaced with defaults. The
    endpoint is not resolved here; a bad URL surfaces when a request is made.
    """

    mode = data.get("mode")
    if mode not in (MODE_OFFLINE, MODE_ONLINE):
        if mode is not None:
            logger.warning("Unknown mode %r; using %s", mode, MODE_OFFLINE)
        mode = MODE_OFFLINE

    base_dir = source_path.parent if source_path is not None else Path.cwd()
    discard_stale = data.get("discardStaleResults")

    return Settings(
        language=_parse_language(data),
        mode=mode,
        offline=_parse_offline(data),
        online=_parse_online(data),
        double_copy_gap=_number(data.get("doubleCopyGapSeconds"), DEFAULT_DOUBLE_COPY_GAP),
        poll_interval=_number(data.get("pollIntervalSeconds"), DEFAULT_POLL_INTERVAL),
        parameters=_parse_parameters(data),
        request_timeout=_number(data.get("requestTimeoutSeconds"), DEFAULT_SETTINGS["requestTimeoutSeconds"]),
        max_line_length=_parse_line_length(data.get("maxLineLength")),
        few_shot_examples_file=_parse_examples_path(data.get("fewShotExamplesFile"), base_dir),
        discard_stale_results=discard_stale if isinstance(discard_stale, bool) else False,
        source_path=source_path,
    )


def load_settings(path: Optional[Path] = None) -> Settings:
    path = Path(path) if path is not None else SETTINGS_FILE
    return parse_settings(_load_raw(path), source_path=path)


def write_default_settings(path: Optional[Path] = None) -> Path:
    """Write the default settings file if it does not exist yet."""

    path = Path(path) if path is not None else SETTINGS_FILE
    if path.exists():
        return path
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(DEFAULT_SETTINGS, indent=2, ensure_ascii=False), encoding="utf-8")
    except OSError as exc:
        logger.warning("Could not write default settings to %s: %s", path, exc)
    return path


def describe_endpoint(settings: Settings) -> Tuple[str, str]:
    """Return ``(mode, url)`` for logging; the URL is empty when unresolvable."""

    try:
        return settings.mode, settings.endpoint().url
    except ConfigurationError:
        return settings.mode, ""
