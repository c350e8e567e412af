"""Runtime settings, read from the environment (and .env via the server entry point)."""
from __future__ import annotations

import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    room_id: str = "global_project_room"
    save_debounce_ms: int = 800
    presence_ttl_ms: int = 30_000
    model: str = "gpt-4o-mini"
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 3001
    llm_timeout_s: float = 60.0

    @staticmethod
    def from_env() -> "Settings":
        return Settings(
            room_id=os.getenv("NODECODE_ROOM_ID", "global_project_room"),
            save_debounce_ms=int(os.getenv("NODECODE_SAVE_DEBOUNCE_MS", "800")),
            presence_ttl_ms=int(os.getenv("NODECODE_PRESENCE_TTL_MS", "30000")),
            model=os.getenv("NODECODE_MODEL", "gpt-4o-mini"),
            log_level=os.getenv("NODECODE_LOG_LEVEL", "INFO"),
            host=os.getenv("NODECODE_HOST", "0.0.0.0"),
            port=int(os.getenv("NODECODE_PORT", "3001")),
            llm_timeout_s=float(os.getenv("NODECODE_LLM_TIMEOUT_S", "60")),
        )
