from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """SFTP bridge configuration"""

    SERVICE_NAME: str = "sftp-bridge"
    SERVICE_VERSION: str = "1.0.0"
    HOST: str = "0.0.0.0"
    PORT: int = 8003
    LOG_LEVEL: str = "INFO"

    # SFTP listener
    SFTP_HOST: str = "0.0.0.0"
    SFTP_PORT: int = 2222
    SFTP_HOST_KEY: str = "./sftp-host-key"
    SFTP_HOST_KEY_BITS: int = 2048
    SFTP_MAX_CONNECTIONS: int = 64

    # Virtual filesystem
    SFTP_NAMESPACE: str = "firmwares"
    SFTP_READDIR_PAGE_SIZE: int = 10
    SFTP_MAX_FILE_SIZE: int = 512 * 1024 * 1024  # 0 disables the cap
    SFTP_BACKEND_TIMEOUT_SEC: float = 60.0
    SFTP_AUTH_TIMEOUT_SEC: float = 15.0
    SFTP_HASH_WORKERS: int = 4

    # S3
    AWS_REGION: str = "ap-northeast-2"
    AWS_ACCESS_KEY_ID: str = ""
    AWS_SECRET_ACCESS_KEY: str = ""
    AWS_BUCKET_NAME: str = ""

    # PostgreSQL (read-only, sftp_users table)
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432
    DB_NAME: str = "craneeyes"
    DB_USER: str = "craneeyes"
    DB_PASSWORD: str = ""
    DB_SSL: bool = True
    POSTGRES_URL: Optional[str] = None

    # Internal API (dashboard backend -> sftp-bridge housekeeping)
    INTERNAL_API_KEY: str = "dev_key"

    @property
    def POSTGRES_DSN(self) -> str:
        """asyncpg DSN; POSTGRES_URL wins over the DB_* fields."""
        if self.POSTGRES_URL:
            return self.POSTGRES_URL.replace("postgresql+asyncpg://", "postgresql://")
        return (
            f"postgresql://{self.DB_USER}:{self.DB_PASSWORD}"
            f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
        )

    class Config:
        env_file = ".env"
        extra = "ignore"


settings = Settings()
