"""Environment-driven settings."""

import os
from dataclasses import dataclass
from typing import Optional


@dataclass
class Settings:
    api_url: str
    username: str = ""
    password: str = ""
    two_factor_code: str = ""
    cache_dir: Optional[str] = None
    scratch_dir: Optional[str] = None
    metadata_file: str = "~/.config/filestore-s3/metadata.json"
    timeout: float = 60.0

    @classmethod
    def from_env(cls, environ=None) -> "Settings":
        env = os.environ if environ is None else environ
        api_url = env.get("FILESTORE_API_URL", "")
        if not api_url:
            raise ValueError("FILESTORE_API_URL environment variable required")

        timeout = env.get("FILESTORE_TIMEOUT", "")
        try:
            timeout_sec = float(timeout) if timeout else 60.0
        except ValueError:
            raise ValueError(f"FILESTORE_TIMEOUT must be a number, got {timeout!r}") from None

        return cls(
            api_url=api_url,
            username=env.get("FILESTORE_USERNAME", ""),
            password=env.get("FILESTORE_PASSWORD", ""),
            two_factor_code=env.get("FILESTORE_TWO_FACTOR", ""),
            cache_dir=env.get("FILESTORE_CACHE_DIR") or None,
            scratch_dir=env.get("FILESTORE_SCRATCH_DIR") or None,
            metadata_file=env.get("FILESTORE_METADATA_FILE") or cls.metadata_file,
            timeout=timeout_sec,
        )
