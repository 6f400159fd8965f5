# app/core/config.py
import os
from dataclasses import dataclass, field
from typing import List

from dotenv import load_dotenv

load_dotenv()


def _split_csv(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


@dataclass
class Settings:
    """Runtime settings - READ FROM .ENV"""

    database_url: str = field(default_factory=lambda: os.getenv("DATABASE_URL", ""))
    environment: str = field(default_factory=lambda: os.getenv("ENVIRONMENT", "development"))

    # Auth
    secret_key: str = field(default_factory=lambda: os.getenv("SECRET_KEY", "super-secret-key-change-this"))
    algorithm: str = field(default_factory=lambda: os.getenv("ALGORITHM", "HS256"))
    access_token_expire_minutes: int = field(
        default_factory=lambda: int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "1440"))
    )

    # Logging
    log_dir: str = field(default_factory=lambda: os.getenv("LOG_DIR", "logs"))

    # HTTP
    cors_origins: List[str] = field(
        default_factory=lambda: _split_csv(
            os.getenv("CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000")
        )
    )

    # Imports
    max_import_file_size: int = field(
        default_factory=lambda: int(os.getenv("MAX_IMPORT_FILE_SIZE", str(10 * 1024 * 1024)))
    )

    # Storage
    supabase_url: str = field(default_factory=lambda: os.getenv("SUPABASE_URL", ""))
    supabase_key: str = field(default_factory=lambda: os.getenv("SUPABASE_KEY", ""))
    documents_bucket: str = field(default_factory=lambda: os.getenv("DOCUMENTS_BUCKET", "user-documents"))

    @property
    def is_development(self) -> bool:
        return self.environment.lower() == "development"


settings = Settings()
