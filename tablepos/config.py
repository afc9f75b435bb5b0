from functools import lru_cache
from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "sqlite:///./tablepos.db"
    allow_origins: list[str] = ["http://localhost:5173", "http://127.0.0.1:5173"]
    restaurant_name: str = "Restaurant POS"
    restaurant_address: str = "Owner Mode"
    table_count: int = 16
    payment_tolerance: float = 0.5
    catalog_seed_path: str | None = None
    drive_access_token: str | None = None
    backup_folder_name: str = "Restaurant_POS_Data"
    backup_file_name: str = "Master_Backup.xlsx"
    backup_timeout: float = 10
    log_level: str = "INFO"

    class Config:
        env_file = ".env"

    @field_validator("allow_origins", mode="before")
    @classmethod
    def split_origins(cls, value):
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        if value is None:
            return []
        return value


@lru_cache
def get_settings() -> Settings:
    return Settings()
