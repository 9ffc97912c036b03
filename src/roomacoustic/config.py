"""
Runtime configuration for RoomAcoustic.

Settings are read from ROOMACOUSTIC_* environment variables; the server's
command line can override them.
"""

import os
from dataclasses import dataclass, replace
from typing import Optional

DEFAULT_DATA_DIR = os.path.join("~", ".local", "share", "roomacoustic")
DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 10316


@dataclass(frozen=True)
class Settings:
    data_dir: str
    db_path: str
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    playback_device: str = "default"
    capture_card: Optional[int] = None

    @property
    def recordings_dir(self) -> str:
        return os.path.join(self.data_dir, "recordings")

    @classmethod
    def from_env(cls, environ=None) -> "Settings":
        """
        Build settings from the environment.

        Raises:
            ValueError: If ROOMACOUSTIC_PORT or ROOMACOUSTIC_CAPTURE_CARD is not an integer
        """
        env = os.environ if environ is None else environ
        data_dir = os.path.expanduser(env.get("ROOMACOUSTIC_DATA_DIR", DEFAULT_DATA_DIR))
        db_path = env.get("ROOMACOUSTIC_DB") or os.path.join(data_dir, "roomacoustic.db")

        try:
            port = int(env.get("ROOMACOUSTIC_PORT", DEFAULT_PORT))
        except ValueError:
            raise ValueError(f"Invalid ROOMACOUSTIC_PORT: {env.get('ROOMACOUSTIC_PORT')!r}")

        card = env.get("ROOMACOUSTIC_CAPTURE_CARD")
        try:
            capture_card = int(card) if card not in (None, "") else None
        except ValueError:
            raise ValueError(f"Invalid ROOMACOUSTIC_CAPTURE_CARD: {card!r}")

        return cls(
            data_dir=data_dir,
            db_path=os.path.expanduser(db_path),
            host=env.get("ROOMACOUSTIC_HOST", DEFAULT_HOST),
            port=port,
            playback_device=env.get("ROOMACOUSTIC_PLAYBACK_DEVICE", "default"),
            capture_card=capture_card,
        )

    def with_overrides(self, host: Optional[str] = None, port: Optional[int] = None,
                       data_dir: Optional[str] = None) -> "Settings":
        """Apply command line overrides; a new data_dir also moves the default database."""
        settings = self
        if data_dir is not None:
            data_dir = os.path.expanduser(data_dir)
            settings = replace(settings, data_dir=data_dir, db_path=os.path.join(data_dir, "roomacoustic.db"))
        if host is not None:
            settings = replace(settings, host=host)
        if port is not None:
            settings = replace(settings, port=port)
        return settings
