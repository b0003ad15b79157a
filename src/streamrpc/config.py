from __future__ import annotations

from collections.abc import Callable
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

SUPPORTED_VERSION = "2.0"


class ConnectionConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", arbitrary_types_allowed=True)

    version: str = SUPPORTED_VERSION
    full_data: bool = Field(False, description="Return the whole response instead of its result")
    broadcast_handler: Callable[[Any], Any] | None = Field(
        None, description="Called with every server message that carries no id", exclude=True
    )
    test_mode: bool = Field(False, description="Send requests without waiting for replies")
    timeout: float | None = Field(None, gt=0, description="Default per-call timeout in seconds")
    encoding: str = "utf-8"
    join_timeout: float = Field(0.5, ge=0, description="How long close() waits for the listener")


__all__ = [
    "SUPPORTED_VERSION",
    "ConnectionConfig",
]
