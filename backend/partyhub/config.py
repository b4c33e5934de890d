from __future__ import annotations

import os

from dotenv import load_dotenv

load_dotenv()


class Settings:
    def __init__(self) -> None:
        self.ws_port = int(os.getenv("WS_PORT", "3001"))
        self.cors_origins = tuple(
            origin.strip()
            for origin in os.getenv("CORS_ORIGINS", "*").split(",")
            if origin.strip()
        ) or ("*",)
        self.max_participants = max(4, int(os.getenv("MAX_PARTICIPANTS", "16")))
        self.reconnect_grace_ms = max(
            1_000,
            int(os.getenv("RECONNECT_GRACE_MS", "120000")),
        )
        self.empty_room_grace_ms = max(
            1_000,
            int(os.getenv("EMPTY_ROOM_GRACE_MS", "120000")),
        )
        self.room_idle_expiry_ms = max(
            60_000,
            int(os.getenv("ROOM_IDLE_EXPIRY_MS", str(6 * 60 * 60 * 1000))),
        )
        self.sweep_interval_ms = max(
            1_000,
            int(os.getenv("SWEEP_INTERVAL_MS", "60000")),
        )


settings = Settings()
