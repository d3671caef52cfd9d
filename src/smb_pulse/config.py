# SMB Pulse - Business health interpretation for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Configuration helpers for SMB Pulse.

This module is responsible for:
- loading the application configuration from a TOML file,
- validating the text-generation, freshness and display settings,
- exposing typed dataclasses used by the CLI to build the explanation
  gateway and the question answering service.

Expected sections in the TOML file (all optional)
-------------------------------------------------
[llm]
    endpoint, model, api_key_env, timeout_seconds, max_retries,
    prompt_version, insight_max_tokens, insight_temperature,
    answer_max_tokens, answer_temperature, max_workers, enabled

[freshness]
    stale_after_hours

[display]
    mode ("table", "json" or "both"), decimals

The API key itself is never stored in the file: ``api_key_env`` names
the environment variable that holds it.
"""

import tomllib
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from .explanations import DEFAULT_PROMPT_VERSION
from .llm import DEFAULT_ENDPOINT, DEFAULT_MODEL

DEFAULT_CONFIG_FILE = "smb_pulse_config.toml"
DISPLAY_MODES = ("table", "json", "both")


@dataclass(frozen=True)
class LLMConfig:
    """Text-generation settings shared by insights and answers."""

    endpoint: str = DEFAULT_ENDPOINT
    model: str = DEFAULT_MODEL
    api_key_env: str = "ANTHROPIC_API_KEY"
    timeout_seconds: float = 30.0
    max_retries: int = 2
    prompt_version: str = DEFAULT_PROMPT_VERSION
    insight_max_tokens: int = 200
    insight_temperature: float = 0.2
    answer_max_tokens: int = 500
    answer_temperature: float = 0.3
    max_workers: int = 4
    enabled: bool = True


@dataclass(frozen=True)
class FreshnessConfig:
    """How old cached data may be before answers carry a notice."""

    stale_after_hours: float = 48.0


@dataclass(frozen=True)
class DisplayConfig:
    mode: str = "table"
    decimals: int = 1


@dataclass(frozen=True)
class AppConfig:
    """Application-wide configuration for SMB Pulse."""

    llm: LLMConfig = field(default_factory=LLMConfig)
    freshness: FreshnessConfig = field(default_factory=FreshnessConfig)
    display: DisplayConfig = field(default_factory=DisplayConfig)


def _load_toml(path: Path) -> dict[str, Any]:
    """
    Load a TOML file and return its content as a dictionary.

    Raises:
        FileNotFoundError: if the file does not exist.
        ValueError: if the TOML content cannot be parsed or is not a table.
    """
    if not path.is_file():
        raise FileNotFoundError(f"Config file not found: {path}")

    try:
        data = tomllib.loads(path.read_text(encoding="utf-8"))
    except Exception as exc:  # noqa: BLE001
        raise ValueError(f"Failed to parse TOML config file: {path}") from exc

    if not isinstance(data, dict):
        raise ValueError(f"Invalid TOML root type in {path}, expected a table.")

    return data


def _section(raw: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    section = raw.get(name) or {}
    if not isinstance(section, Mapping):
        raise ValueError(f"Config section [{name}] must be a table.")
    return section


def _number(
    section: Mapping[str, Any],
    key: str,
    default: float,
    section_name: str,
    minimum: float = 0.0,
) -> float:
    raw = section.get(key, default)
    if isinstance(raw, bool):
        raise ValueError(f"Invalid value for '{section_name}.{key}', expected a number.")
    try:
        value = float(raw)
    except (TypeError, ValueError) as exc:
        raise ValueError(
            f"Invalid value for '{section_name}.{key}', expected a number."
        ) from exc
    if value < minimum:
        raise ValueError(
            f"Invalid value for '{section_name}.{key}', must be >= {minimum:g}."
        )
    return value


def _boolean(
    section: Mapping[str, Any],
    key: str,
    default: bool,
    section_name: str,
) -> bool:
    raw = section.get(key, default)
    if not isinstance(raw, bool):
        raise ValueError(
            f"Invalid value for '{section_name}.{key}', expected true or false."
        )
    return raw


def _integer(
    section: Mapping[str, Any],
    key: str,
    default: int,
    section_name: str,
    minimum: int = 0,
) -> int:
    raw = section.get(key, default)
    if isinstance(raw, bool) or not isinstance(raw, (int, str)):
        raise ValueError(
            f"Invalid value for '{section_name}.{key}', expected an integer."
        )
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError(
            f"Invalid value for '{section_name}.{key}', expected an integer."
        ) from exc
    if value < minimum:
        raise ValueError(f"Invalid value for '{section_name}.{key}', must be >= {minimum}.")
    return value


def _parse_llm(raw: Mapping[str, Any]) -> LLMConfig:
    section = _section(raw, "llm")
    defaults = LLMConfig()

    return LLMConfig(
        endpoint=str(section.get("endpoint") or defaults.endpoint),
        model=str(section.get("model") or defaults.model),
        api_key_env=str(section.get("api_key_env") or defaults.api_key_env),
        timeout_seconds=_number(
            section, "timeout_seconds", defaults.timeout_seconds, "llm", minimum=1
        ),
        max_retries=_integer(section, "max_retries", defaults.max_retries, "llm", minimum=1),
        prompt_version=str(section.get("prompt_version") or defaults.prompt_version),
        insight_max_tokens=_integer(
            section, "insight_max_tokens", defaults.insight_max_tokens, "llm", minimum=1
        ),
        insight_temperature=_number(
            section, "insight_temperature", defaults.insight_temperature, "llm"
        ),
        answer_max_tokens=_integer(
            section, "answer_max_tokens", defaults.answer_max_tokens, "llm", minimum=1
        ),
        answer_temperature=_number(
            section, "answer_temperature", defaults.answer_temperature, "llm"
        ),
        max_workers=_integer(section, "max_workers", defaults.max_workers, "llm", minimum=1),
        enabled=_boolean(section, "enabled", defaults.enabled, "llm"),
    )


def _parse_display(raw: Mapping[str, Any]) -> DisplayConfig:
    section = _section(raw, "display")

    mode = str(section.get("mode", "table")).lower()
    if mode not in DISPLAY_MODES:
        raise ValueError(
            f"Invalid value for 'display.mode': {mode!r}. "
            f"Expected one of: {', '.join(DISPLAY_MODES)}."
        )

    return DisplayConfig(mode=mode, decimals=_integer(section, "decimals", 1, "display"))


def load_app_config(config_path: Optional[str] = None) -> AppConfig:
    """
    Load the SMB Pulse application configuration from a TOML file.

    Parameters
    ----------
    config_path : str, optional
        Path to the TOML configuration file. Defaults to
        ``smb_pulse_config.toml`` in the current directory.

    Returns
    -------
    AppConfig
        Parsed and validated configuration; omitted sections use defaults.

    Raises
    ------
    FileNotFoundError
        If the file does not exist.
    ValueError
        If the file cannot be parsed or a value is invalid.
    """
    if config_path is None:
        config_file = Path(DEFAULT_CONFIG_FILE).resolve()
    else:
        config_file = Path(config_path).resolve()

    raw = _load_toml(config_file)

    freshness_section = _section(raw, "freshness")
    freshness = FreshnessConfig(
        stale_after_hours=_number(
            freshness_section, "stale_after_hours", 48.0, "freshness"
        )
    )

    return AppConfig(
        llm=_parse_llm(raw),
        freshness=freshness,
        display=_parse_display(raw),
    )
