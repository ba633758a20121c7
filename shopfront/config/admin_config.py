from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    ENV: str = "dev"                # "dev" / "staging" / "prod"
    ENABLE_ADMIN: bool = True
    SERVICE_NAME: str = "shopfront"

    class Config:
        env_file = ".env"
        extra="ignore"

admin_config = Settings()
