import os
from dataclasses import dataclass

from dotenv import load_dotenv

# Load the appropriate .env file on module import
env = os.environ.get("NAUTICAL_ENV", "development").lower()
env_file = f".env.{env}"
if os.path.exists(env_file):
    load_dotenv(env_file)
else:
    # Fall back to the default .env file
    load_dotenv()


@dataclass
class Config:
    environment: str
    database_url: str
    pool_min_size: int
    pool_max_size: int
    pool_timeout: float
    statement_timeout_ms: int
    stream_buffer: int
    scan_batch_size: int
    log_level: str

    @classmethod
    def from_env(cls) -> "Config":
        return cls(
            environment=env,
            database_url=os.environ.get(
                "DATABASE_URL", "postgresql://localhost:5432/nautical"
            ),
            pool_min_size=int(os.environ.get("POOL_MIN_SIZE", "1")),
            pool_max_size=int(os.environ.get("POOL_MAX_SIZE", "10")),
            pool_timeout=float(os.environ.get("POOL_TIMEOUT", "30")),
            statement_timeout_ms=int(os.environ.get("STATEMENT_TIMEOUT_MS", "30000")),
            stream_buffer=int(os.environ.get("STREAM_BUFFER", "1")),
            scan_batch_size=int(os.environ.get("SCAN_BATCH_SIZE", "500")),
            log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        )

    def connection_kwargs(self) -> dict:
        """Keyword arguments applied to every pooled connection."""
        kwargs = {}
        if self.statement_timeout_ms > 0:
            kwargs["options"] = f"-c statement_timeout={self.statement_timeout_ms}"
        return kwargs


config = Config.from_env()
