from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from streamrpc.config import ConnectionConfig
from streamrpc.errors import SetupError

_TRUE = {"1", "true", "yes", "on"}


def _env_flag(value: str) -> bool:
    return value.strip().lower() in _TRUE


def _apply_env_overrides(cfg: ConnectionConfig) -> ConnectionConfig:
    updates: dict[str, Any] = {}
    timeout = os.environ.get("STREAMRPC_TIMEOUT")
    if timeout:
        updates["timeout"] = float(timeout) if timeout.lower() != "none" else None
    full_data = os.environ.get("STREAMRPC_FULL_DATA")
    if full_data:
        updates["full_data"] = _env_flag(full_data)
    test_mode = os.environ.get("STREAMRPC_TEST_MODE")
    if test_mode:
        updates["test_mode"] = _env_flag(test_mode)
    encoding = os.environ.get("STREAMRPC_ENCODING")
    if encoding:
        updates["encoding"] = encoding
    if not updates:
        return cfg
    # re-validate so overrides get the same checks as file values
    return ConnectionConfig.model_validate({**cfg.model_dump(), **updates})


def load_config(path: str | Path) -> ConnectionConfig:
    """Load connection options from a JSON or YAML file, then apply STREAMRPC_* overrides.

    The file may hold the options at the top level or under a ``connection`` key.
    """
    p = Path(path)
    try:
        text = p.read_text(encoding="utf-8")
    except OSError as e:
        raise SetupError("config", "a readable file", f"{p}: {e.strerror or e}") from e
    if p.suffix.lower() in {".yaml", ".yml"}:
        import yaml

        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise SetupError("config", "valid YAML", f"{p}: {e}") from e
    else:
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise SetupError("config", "valid JSON", f"{p}: {e}") from e

    if data is None:
        data = {}
    if isinstance(data, dict) and isinstance(data.get("connection"), dict):
        data = data["connection"]

    try:
        cfg = ConnectionConfig.model_validate(data)
        return _apply_env_overrides(cfg)
    except (ValidationError, ValueError) as e:
        raise SetupError("config", "a valid connection config", f"{p}: {e}") from e
