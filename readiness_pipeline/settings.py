"""
Configuration loading for the readiness pipeline.

Settings are read from a YAML file into plain dataclasses and handed to
the orchestrator explicitly. Credentials are never stored in the file;
each section names the environment variable that holds them.
"""
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from errors import ConfigurationError


logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


@dataclass
class JiraSettings:
    base_url: str = ""
    email: str = ""
    api_token_env: str = "JIRA_API_TOKEN"
    project_keys: str = ""
    jql: str = ""
    timeout_seconds: float = 30.0
    max_retries: int = 2
    max_results: int = 200
    writeback: bool = False

    @property
    def api_token(self) -> Optional[str]:
        return os.getenv(self.api_token_env) if self.api_token_env else None


@dataclass
class SlackSettings:
    bot_token_env: str = "SLACK_BOT_TOKEN"
    default_channel: str = ""
    base_url: str = "https://slack.com/api"
    timeout_seconds: float = 10.0
    max_retries: int = 2

    @property
    def bot_token(self) -> Optional[str]:
        return os.getenv(self.bot_token_env) if self.bot_token_env else None


@dataclass
class LlmSettings:
    provider: str = "openai"
    api_key_env: str = "LLM_API_KEY"
    model: str = "gpt-4o-mini"
    base_url: str = ""
    timeout_seconds: float = 30.0

    @property
    def api_key(self) -> Optional[str]:
        return os.getenv(self.api_key_env) if self.api_key_env else None


@dataclass
class Settings:
    """
    Top-level pipeline configuration.

    mock_mode switches every collaborator (Jira, Slack, LLM) to its
    simulated implementation.
    """
    mock_mode: bool = True
    database_path: str = "readiness.duckdb"
    max_workers: int = 4
    default_project_key: str = "DEMO"
    threshold_ready: float = 4.0
    threshold_clarification: float = 2.5
    log_level: str = "INFO"
    jira: JiraSettings = field(default_factory=JiraSettings)
    slack: SlackSettings = field(default_factory=SlackSettings)
    llm: LlmSettings = field(default_factory=LlmSettings)

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> "Settings":
        """
        Build settings from a parsed YAML document.

        Raises:
            ConfigurationError: If a required section is missing
        """
        if not isinstance(config, dict):
            raise ConfigurationError("Configuration must be a mapping")

        if "database" not in config:
            raise ConfigurationError("Missing required config key: database")

        database = config["database"] or {}
        scan = config.get("scan") or {}
        thresholds = config.get("thresholds") or {}
        logging_cfg = config.get("logging") or {}

        return cls(
            mock_mode=bool(config.get("mock_mode", True)),
            database_path=database.get("path", "readiness.duckdb"),
            max_workers=int(scan.get("max_workers", 4)),
            default_project_key=scan.get("default_project_key", "DEMO"),
            threshold_ready=float(thresholds.get("ready", 4.0)),
            threshold_clarification=float(thresholds.get("clarification", 2.5)),
            log_level=logging_cfg.get("level", "INFO"),
            jira=_section(JiraSettings, config.get("jira")),
            slack=_section(SlackSettings, config.get("slack")),
            llm=_section(LlmSettings, config.get("llm")),
        )


def _section(section_cls, values: Optional[Dict[str, Any]]):
    values = values or {}
    known = set(section_cls.__dataclass_fields__)
    unknown = set(values) - known
    if unknown:
        logger.warning(f"Ignoring unknown {section_cls.__name__} keys: {sorted(unknown)}")
    return section_cls(**{k: v for k, v in values.items() if k in known})


def load_settings(config_path: str = "config.yaml") -> Settings:
    """
    Load settings from a YAML file.

    Args:
        config_path: Path to YAML configuration file

    Returns:
        Parsed Settings

    Raises:
        ConfigurationError: If the file is missing or incomplete
    """
    path = Path(config_path)
    if not path.exists():
        raise ConfigurationError(f"Config file not found: {config_path}")

    with open(path) as f:
        config = yaml.safe_load(f)

    return Settings.from_dict(config)


def configure_logging(settings: Settings) -> None:
    """Apply the configured log level and format."""
    logging.basicConfig(
        level=getattr(logging, str(settings.log_level).upper(), logging.INFO),
        format=LOG_FORMAT
    )
