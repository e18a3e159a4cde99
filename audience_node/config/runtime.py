from __future__ import annotations

from dataclasses import dataclass
import os


@dataclass(frozen=True)
class RuntimeSettings:
    recompute_interval_seconds: int
    recompute_debounce_seconds: float
    notify_channels: tuple[str, ...]
    report_host: str
    report_port: int

    @classmethod
    def from_env(cls) -> "RuntimeSettings":
        channels = os.getenv("NOTIFY_CHANNELS", "predictions_changed,programs_changed,profiles_changed")
        return cls(
            recompute_interval_seconds=int(os.getenv("RECOMPUTE_INTERVAL_SECONDS", "300")),
            recompute_debounce_seconds=float(os.getenv("RECOMPUTE_DEBOUNCE_SECONDS", "1.0")),
            notify_channels=tuple(ch.strip() for ch in channels.split(",") if ch.strip()),
            report_host=os.getenv("REPORT_HOST", "0.0.0.0"),
            report_port=int(os.getenv("REPORT_PORT", "8000")),
        )
