import os
from pathlib import Path
from typing import Optional

import yaml

DEFAULT_CONFIG: dict = {
    "model": "anthropic",
    "store": "memory",  # "memory" | "sqlite"
    "store_path": ".prwatch.db",
    "max_chars_per_submission": 40000,
    "guidelines": None,  # None = use built-in default; set to a path string to override
    "auto_reply": False,  # post engine findings back to the PR as a comment
    "backlog_domain": "backlog.jp",  # "backlog.jp" | "backlog.com"
    "targets": [],  # [{"host": "backlog", "project": "KEY", "repository": "name"}, ...]
    "queue": {
        "max_retries": 3,
        "base_delay": 1.0,
        "retry_delay": 5.0,
    },
}

DEFAULT_GUIDELINES = """\
## Review guidelines
- Flag bugs, unhandled errors, and security problems first.
- Point out unclear naming and duplicated logic.
- Suggest concrete fixes; quote the code you are referring to.
- Do not comment on formatting that an automatic formatter would fix.
"""


def load_config(config_path: str = ".prwatch.yml", cli_overrides: Optional[dict] = None) -> dict:
    """
    Load configuration by merging (in order of precedence):
      1. Built-in defaults
      2. .prwatch.yml in the current directory
      3. CLI argument overrides

    The nested ``queue`` section is merged key by key so a file may override
    a single timing value without restating the others.
    """
    config = {
        **DEFAULT_CONFIG,
        "targets": list(DEFAULT_CONFIG["targets"]),
        "queue": dict(DEFAULT_CONFIG["queue"]),
    }

    path = Path(config_path)
    if path.exists():
        with open(path) as f:
            file_config = yaml.safe_load(f) or {}
        queue_overrides = file_config.pop("queue", None) or {}
        config.update(file_config)
        config["queue"].update(queue_overrides)

    if cli_overrides:
        for key, value in cli_overrides.items():
            if value is not None:
                config[key] = value

    # Resolve credentials from environment variables
    config["backlog_space"] = os.environ.get("BACKLOG_SPACE")
    config["backlog_api_key"] = os.environ.get("BACKLOG_API_KEY")
    config["github_token"] = os.environ.get("GITHUB_TOKEN")
    config["anthropic_api_key"] = os.environ.get("ANTHROPIC_API_KEY")
    config["openai_api_key"] = os.environ.get("OPENAI_API_KEY")
    config["github_webhook_secret"] = os.environ.get("GITHUB_WEBHOOK_SECRET")

    return config


def load_guidelines(config: dict) -> str:
    """
    Load review guidelines.

    If ``guidelines`` is set in config, loads from that path (relative to cwd).
    Otherwise falls back to the built-in default.
    """
    custom_path = config.get("guidelines")
    if custom_path:
        p = Path(custom_path)
        if not p.exists():
            raise FileNotFoundError(f"Guidelines file not found: {custom_path}")
        return p.read_text()
    return DEFAULT_GUIDELINES
