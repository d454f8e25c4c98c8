from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    app_name: str = "SParsh"
    debug: bool = False

    # Paths
    db_path: Path = Path(__file__).resolve().parent.parent.parent / "sparsh.db"

    # Responder
    gemini_api_key: str = ""
    primary_model: str = "gemini-2.0-flash"
    fallback_model: str = "gemini-2.0-flash-lite"
    responder_timeout_seconds: float = 25.0

    # Guardian (background intervention agent)
    guardian_enabled: bool = True
    guardian_model: str = "gemini-2.0-flash-lite"

    # Sync
    sync_interval_seconds: float = 5.0
    avatar_idle_delay_seconds: float = 3.0
    background_drain_seconds: float = 30.0  # wait for Guardian runs on disconnect
    counselor_id: str = "counselor_dimple"

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    cors_origins: list[str] = ["*"]

    model_config = {
        "env_file": str(Path(__file__).resolve().parent.parent.parent / ".env"),
        "env_prefix": "SPARSH_",
    }


settings = Settings()
