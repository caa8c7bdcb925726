from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "sqlite:///./relaybot.db"
    bot_token: str = ""
    admin_group_id: str = ""
    admin_ids: str = ""
    log_level: str = "INFO"
    debug: bool = False

    class Config:
        env_file = ".env"
        extra = "ignore"

    @property
    def primary_admin_ids(self) -> list[str]:
        return [item.strip() for item in self.admin_ids.split(",") if item.strip()]


settings = Settings()
