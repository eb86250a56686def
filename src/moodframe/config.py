"""Configuration handling."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Mapping, Optional
from urllib.parse import urlparse

import yaml

from .errors import ConfigError


@dataclass
class AudioConfig:
    sample_rate_hz: int = 16000
    channels: int = 1
    device_name: Optional[str] = None
    live_captions: bool = True
    caption_model: str = "tiny"


@dataclass
class ProviderPolicyConfig:
    timeout_s: float = 30.0
    max_retries: int = 3
    cold_start_default_s: float = 15.0
    retry_interval_s: float = 2.0


@dataclass
class GenerativeConfig:
    api_key: Optional[str] = None
    model: str = "gemini-flash-latest"
    base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    transcribe_audio: bool = True


@dataclass
class ProxyConfig:
    url: Optional[str] = None


@dataclass
class RelayConfig:
    url: Optional[str] = None
    token: Optional[str] = None
    model: str = "openai/whisper-tiny"


@dataclass
class StoreConfig:
    url: Optional[str] = None
    api_key: Optional[str] = None
    access_token: Optional[str] = None
    check_ins_table: str = "check_ins"
    recordings_table: str = "recordings"
    profiles_table: str = "profiles"
    recordings_bucket: str = "recordings"


@dataclass
class AnalysisConfig:
    max_workers: int = 6


@dataclass
class Config:
    user_id: Optional[str] = None
    log_dir: str = "logs"
    audio: AudioConfig = field(default_factory=AudioConfig)
    providers: ProviderPolicyConfig = field(default_factory=ProviderPolicyConfig)
    generative: GenerativeConfig = field(default_factory=GenerativeConfig)
    proxy: ProxyConfig = field(default_factory=ProxyConfig)
    relay: RelayConfig = field(default_factory=RelayConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    analysis: AnalysisConfig = field(default_factory=AnalysisConfig)


ENV_OVERRIDES = {
    "MOODFRAME_USER_ID": ("user_id", None),
    "MOODFRAME_GEMINI_API_KEY": ("generative", "api_key"),
    "MOODFRAME_GEMINI_MODEL": ("generative", "model"),
    "MOODFRAME_PROXY_URL": ("proxy", "url"),
    "MOODFRAME_RELAY_URL": ("relay", "url"),
    "MOODFRAME_HF_TOKEN": ("relay", "token"),
    "MOODFRAME_SUPABASE_URL": ("store", "url"),
    "MOODFRAME_SUPABASE_KEY": ("store", "api_key"),
    "MOODFRAME_SUPABASE_ACCESS_TOKEN": ("store", "access_token"),
}


def _section(cls, data: dict, name: str):
    values = data.get(name) or {}
    if not isinstance(values, dict):
        raise ConfigError(f"Config section '{name}' must be a mapping.")
    try:
        return cls(**values)
    except TypeError as exc:
        raise ConfigError(f"Invalid keys in config section '{name}': {exc}") from exc


def config_from_dict(data: dict) -> Config:
    return Config(
        user_id=data.get("user_id"),
        log_dir=data.get("log_dir", "logs"),
        audio=_section(AudioConfig, data, "audio"),
        providers=_section(ProviderPolicyConfig, data, "providers"),
        generative=_section(GenerativeConfig, data, "generative"),
        proxy=_section(ProxyConfig, data, "proxy"),
        relay=_section(RelayConfig, data, "relay"),
        store=_section(StoreConfig, data, "store"),
        analysis=_section(AnalysisConfig, data, "analysis"),
    )


def apply_env_overrides(config: Config, environ: Optional[Mapping[str, str]] = None) -> Config:
    env = os.environ if environ is None else environ
    for var, (section, key) in ENV_OVERRIDES.items():
        value = env.get(var)
        if not value:
            continue
        if key is None:
            setattr(config, section, value)
        else:
            setattr(getattr(config, section), key, value)
    return config


def load_config(path: str, environ: Optional[Mapping[str, str]] = None) -> Config:
    data: dict = {}
    if path and os.path.exists(path):
        with open(path, "r", encoding="utf-8") as handle:
            try:
                data = yaml.safe_load(handle) or {}
            except yaml.YAMLError as exc:
                raise ConfigError(f"Could not parse {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a mapping at the top level.")
    return apply_env_overrides(config_from_dict(data), environ)


def save_config(path: str, config: Config) -> None:
    data = {
        "user_id": config.user_id,
        "log_dir": config.log_dir,
        "audio": {
            "sample_rate_hz": config.audio.sample_rate_hz,
            "channels": config.audio.channels,
            "device_name": config.audio.device_name,
            "live_captions": config.audio.live_captions,
            "caption_model": config.audio.caption_model,
        },
        "providers": {
            "timeout_s": config.providers.timeout_s,
            "max_retries": config.providers.max_retries,
            "cold_start_default_s": config.providers.cold_start_default_s,
            "retry_interval_s": config.providers.retry_interval_s,
        },
        "generative": {
            "api_key": config.generative.api_key,
            "model": config.generative.model,
            "base_url": config.generative.base_url,
            "transcribe_audio": config.generative.transcribe_audio,
        },
        "proxy": {"url": config.proxy.url},
        "relay": {
            "url": config.relay.url,
            "token": config.relay.token,
            "model": config.relay.model,
        },
        "store": {
            "url": config.store.url,
            "api_key": config.store.api_key,
            "access_token": config.store.access_token,
            "check_ins_table": config.store.check_ins_table,
            "recordings_table": config.store.recordings_table,
            "profiles_table": config.store.profiles_table,
            "recordings_bucket": config.store.recordings_bucket,
        },
        "analysis": {"max_workers": config.analysis.max_workers},
    }
    with open(path, "w", encoding="utf-8") as handle:
        yaml.safe_dump(data, handle, sort_keys=False)


def _check_url(value: Optional[str], label: str) -> None:
    if value is None:
        return
    parsed = urlparse(value)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ConfigError(f"{label} must be an http(s) URL, got {value!r}.")


def validate_config(config: Config, require_store: bool = True) -> Config:
    """Fail at startup instead of deep inside a pipeline run."""
    if not config.generative.api_key:
        raise ConfigError(
            "Gemini API key missing. Set generative.api_key or MOODFRAME_GEMINI_API_KEY."
        )
    if config.providers.timeout_s <= 0:
        raise ConfigError("providers.timeout_s must be > 0.")
    if config.providers.max_retries < 1:
        raise ConfigError("providers.max_retries must be >= 1.")
    if config.providers.cold_start_default_s < 0 or config.providers.retry_interval_s < 0:
        raise ConfigError("Provider wait intervals must be >= 0.")
    if config.analysis.max_workers < 1:
        raise ConfigError("analysis.max_workers must be >= 1.")
    if config.audio.sample_rate_hz <= 0 or config.audio.channels <= 0:
        raise ConfigError("audio.sample_rate_hz and audio.channels must be > 0.")
    _check_url(config.generative.base_url, "generative.base_url")
    _check_url(config.proxy.url, "proxy.url")
    _check_url(config.relay.url, "relay.url")
    if require_store:
        if not config.store.url or not config.store.api_key:
            raise ConfigError(
                "Store is not configured. Set MOODFRAME_SUPABASE_URL and MOODFRAME_SUPABASE_KEY."
            )
        _check_url(config.store.url, "store.url")
        if not config.user_id:
            raise ConfigError("user_id is required to write check-ins.")
    return config
