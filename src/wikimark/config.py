"""Configuration loading from environment variables and wikimark.toml."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib
from pathlib import Path

_DEFAULT_REPO_DIR = Path.home() / ".wikimark" / "repo"
_CONFIG_FILENAME = "wikimark.toml"


@dataclass
class StorageConfig:
    """Where pages are stored and how commits are signed."""

    repo_path: Path = _DEFAULT_REPO_DIR
    branch: str = "master"
    email_domain: str = "wikimark.local"


@dataclass
class RenderConfig:
    """Markdown rendering options."""

    highlight_style: str = "monokai"


@dataclass
class WikiConfig:
    """Top-level wikimark configuration."""

    storage: StorageConfig = field(default_factory=StorageConfig)
    render: RenderConfig = field(default_factory=RenderConfig)
    commit_url_prefix: str = ""
    log_level: str = "INFO"


def load_config(config_path: Path | None = None) -> WikiConfig:
    """Load configuration from environment variables and optional wikimark.toml.

    Priority: environment variables > wikimark.toml > defaults.
    """
    file_data: dict = {}
    if config_path and config_path.exists():
        file_data = tomllib.loads(config_path.read_text())
    else:
        for candidate in [
            Path.cwd() / _CONFIG_FILENAME,
            Path.home() / ".wikimark" / _CONFIG_FILENAME,
        ]:
            if candidate.exists():
                file_data = tomllib.loads(candidate.read_text())
                break

    storage_data = file_data.get("storage", {})
    render_data = file_data.get("render", {})

    config = WikiConfig(
        storage=StorageConfig(
            repo_path=Path(
                os.getenv("WIKIMARK_REPO", storage_data.get("repo_path", str(_DEFAULT_REPO_DIR)))
            ).expanduser(),
            branch=os.getenv("WIKIMARK_BRANCH", storage_data.get("branch", "master")),
            email_domain=os.getenv(
                "WIKIMARK_EMAIL_DOMAIN", storage_data.get("email_domain", "wikimark.local")
            ),
        ),
        render=RenderConfig(
            highlight_style=os.getenv(
                "WIKIMARK_HIGHLIGHT_STYLE", render_data.get("highlight_style", "monokai")
            ),
        ),
        commit_url_prefix=os.getenv(
            "WIKIMARK_COMMIT_URL", file_data.get("commit_url_prefix", "")
        ),
        log_level=os.getenv("WIKIMARK_LOG_LEVEL", file_data.get("log_level", "INFO")),
    )
    return config
