"""
config.py — Upload Gateway Configuration
==========================================
Loads settings from environment variables with sensible defaults.
"""

import os
import tempfile


class Settings:
    """Upload Gateway configuration loaded from environment."""

    HOST: str = os.getenv("GATEWAY_HOST", "0.0.0.0")
    PORT: int = int(os.getenv("GATEWAY_PORT", "8000"))
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    WORK_DIR: str = os.getenv("UPLOAD_WORK_DIR", tempfile.gettempdir())
    MAX_TRANSMISSION_SIZE: int = int(
        os.getenv("UPLOAD_MAX_SIZE", str(10 * 1024 * 1024))  # 10 MiB
    )
    CLIENT_NAMESPACE: str = os.getenv("UPLOAD_CLIENT_NAMESPACE", "UPLOAD_CL_ID")
    DUPLICATE_CHUNK_POLICY: str = os.getenv("DUPLICATE_CHUNK_POLICY", "replace")

    # 0 disables the idle reaper
    TRANSMISSION_IDLE_TIMEOUT: int = int(
        os.getenv("TRANSMISSION_IDLE_TIMEOUT", "3600")
    )
    SWEEP_INTERVAL: int = int(os.getenv("SWEEP_INTERVAL", "60"))

    ACCESS_CONTROL_ALLOW_ORIGIN: str = os.getenv("ACCESS_CONTROL_ALLOW_ORIGIN", "")


settings = Settings()
