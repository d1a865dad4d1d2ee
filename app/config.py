from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "postgresql+asyncpg://localhost:5432/dailytrail"
    api_key: str | None = None
    sql_echo: bool = False
    create_tables: bool = True  # create_all on startup; use migrations in prod
    log_level: str = "INFO"

    # Single implicit owner when the auth collaborator sends no X-Owner-Id
    default_owner_id: str = "local"
    # Minutes east of UTC, used when the request carries no tz_offset cookie
    default_offset_minutes: int = 0

    # Window sizes (days) per call site
    timeline_days: int = 91
    dashboard_days: int = 90
    heatmap_days: int = 105

    timeline_page_size: int = 20
    timeline_page_max: int = 100

    note_max_length: int = 280

    model_config = {"env_file": ".env", "extra": "ignore"}


settings = Settings()
