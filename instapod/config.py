"""Centralized configuration for the Instapod pipeline.

Settings come from a YAML file (CONFIG_PATH, default config.yaml), then
environment variables (a .env file is honoured), on top of built-in defaults.
"""
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from croniter import croniter
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError

from instapod.errors import ConfigInvalid

logger = logging.getLogger(__name__)

# --- Timeouts (seconds) ---
SOURCE_TIMEOUT = 30.0
TRANSLATION_TIMEOUT = 120.0
SYNTHESIS_TIMEOUT = 1800.0

# --- Prompt / template defaults ---
DEFAULT_TITLE_PROMPT = (
    "You are a translator. Translate the following title to {{target_language}}. "
    "Return only the translated title, nothing else."
)
DEFAULT_TEXT_PROMPT = (
    "You are a translator. Translate the following text to {{target_language}}. "
    "Preserve paragraph breaks. Return only the translated text, nothing else."
)
DEFAULT_INTRO_TEMPLATE = "En artikel från {source}. {title}."


class InstapaperConfig(BaseModel):
    consumer_key: str = ""
    consumer_secret: str = ""
    username: str = ""
    password: str = ""


class FilterConfig(BaseModel):
    tags: List[str] = Field(default_factory=list)


class TranslationConfig(BaseModel):
    api_base: str = "https://api.openai.com/v1"
    api_key: str = ""
    model: str = "gpt-4o-mini"
    target_language: str = "svenska"
    skip_if_same: bool = True
    title_prompt: str = DEFAULT_TITLE_PROMPT
    text_prompt: str = DEFAULT_TEXT_PROMPT

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)


class TtsConfig(BaseModel):
    voice: str = "sv-SE-SofieNeural"
    rate: str = "+0%"
    pitch: str = "+0Hz"
    intro_template: str = DEFAULT_INTRO_TEMPLATE


class ScheduleConfig(BaseModel):
    cron: str = "*/30 * * * *"
    run_on_startup: bool = True


class ServerConfig(BaseModel):
    host: str = "0.0.0.0"
    port: int = 8080
    base_url: str = ""


class FeedConfig(BaseModel):
    title: str = "Instapod"
    description: str = "Artiklar upplästa som podcast"
    language: str = "sv"
    author: str = "Instapod"
    image: Optional[str] = None
    episode_description: str = "Artikel från {source}"


class AdminConfig(BaseModel):
    username: str = "admin"
    password: str = ""


class PipelineConfig(BaseModel):
    concurrency: int = Field(default=2, ge=1)
    synthesis_timeout: float = Field(default=SYNTHESIS_TIMEOUT, gt=0)


class AppConfig(BaseModel):
    instapaper: InstapaperConfig = Field(default_factory=InstapaperConfig)
    filters: FilterConfig = Field(default_factory=FilterConfig)
    translation: TranslationConfig = Field(default_factory=TranslationConfig)
    tts: TtsConfig = Field(default_factory=TtsConfig)
    schedule: ScheduleConfig = Field(default_factory=ScheduleConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    feed: FeedConfig = Field(default_factory=FeedConfig)
    admin: AdminConfig = Field(default_factory=AdminConfig)
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)
    data_dir: str = "/data"

    @property
    def data_path(self) -> Path:
        return Path(self.data_dir)

    @property
    def audio_dir(self) -> Path:
        return self.data_path / "audio"


REQUIRED_FIELDS = (
    "instapaper.consumer_key",
    "instapaper.consumer_secret",
    "instapaper.username",
    "instapaper.password",
    "server.base_url",
)

ENV_OVERRIDES = {
    "INSTAPAPER_CONSUMER_KEY": "instapaper.consumer_key",
    "INSTAPAPER_CONSUMER_SECRET": "instapaper.consumer_secret",
    "INSTAPAPER_USERNAME": "instapaper.username",
    "INSTAPAPER_PASSWORD": "instapaper.password",
    "TRANSLATION_API_BASE": "translation.api_base",
    "TRANSLATION_API_KEY": "translation.api_key",
    "TRANSLATION_MODEL": "translation.model",
    "TRANSLATION_TARGET_LANGUAGE": "translation.target_language",
    "TTS_VOICE": "tts.voice",
    "TTS_RATE": "tts.rate",
    "TTS_PITCH": "tts.pitch",
    "SCHEDULE_CRON": "schedule.cron",
    "SERVER_PORT": "server.port",
    "SERVER_BASE_URL": "server.base_url",
    "ADMIN_USERNAME": "admin.username",
    "ADMIN_PASSWORD": "admin.password",
    "PIPELINE_CONCURRENCY": "pipeline.concurrency",
    "DATA_DIR": "data_dir",
}


def _get_nested(raw: Dict[str, Any], dotted: str) -> Any:
    node: Any = raw
    for key in dotted.split("."):
        if not isinstance(node, dict):
            return None
        node = node.get(key)
    return node


def _set_nested(raw: Dict[str, Any], dotted: str, value: Any) -> None:
    parts = dotted.split(".")
    node = raw
    for key in parts[:-1]:
        if not isinstance(node.get(key), dict):
            node[key] = {}
        node = node[key]
    node[parts[-1]] = value


def apply_env_overrides(raw: Dict[str, Any], environ=None) -> Dict[str, Any]:
    """Overlay known environment variables onto the raw config mapping."""
    environ = os.environ if environ is None else environ
    for env_key, dotted in ENV_OVERRIDES.items():
        value = environ.get(env_key)
        if value is None:
            continue
        _set_nested(raw, dotted, value)
    return raw


def _read_yaml(path: Path) -> Dict[str, Any]:
    try:
        content = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        logger.warning(f"Config file not found at {path}, using env + defaults")
        return {}
    try:
        raw = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ConfigInvalid(f"Could not parse {path}: {e}") from e
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigInvalid(f"{path} must contain a mapping at the top level")
    return raw


def validate_config(raw: Dict[str, Any]) -> AppConfig:
    """Build an AppConfig from a raw mapping, raising ConfigInvalid on any problem."""
    try:
        config = AppConfig.model_validate(raw)
    except ValidationError as e:
        raise ConfigInvalid(f"Invalid configuration: {e}") from e

    missing = [f for f in REQUIRED_FIELDS if not _get_nested(config.model_dump(), f)]
    if missing:
        raise ConfigInvalid(
            f"Missing required config fields: {', '.join(missing)}. "
            f"Set them in config.yaml or via environment variables."
        )
    if not croniter.is_valid(config.schedule.cron):
        raise ConfigInvalid(f"Invalid cron expression: {config.schedule.cron!r}")
    for name, template in (("tts.intro_template", config.tts.intro_template),
                           ("feed.episode_description", config.feed.episode_description)):
        try:
            template.format(source="example.com", title="Title")
        except (AttributeError, IndexError, KeyError, ValueError) as e:
            raise ConfigInvalid(
                f"Invalid {name} {template!r}: only {{source}} and {{title}} placeholders are allowed ({e})"
            ) from e
    return config


def load_config(config_path: Optional[str] = None, environ=None) -> AppConfig:
    """Load YAML + environment into a validated AppConfig."""
    load_dotenv()
    path = Path(config_path or os.environ.get("CONFIG_PATH", "config.yaml")).resolve()
    raw = _read_yaml(path)
    apply_env_overrides(raw, environ)
    config = validate_config(raw)
    logger.info(f"[config] Loaded config for feed: \"{config.feed.title}\"")
    return config
