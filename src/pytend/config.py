"""Global configuration, loaded from environment variables."""

from pydantic_settings import BaseSettings


class PytendSettings(BaseSettings):
    ps_binary: str = "ps"
    python_executable: str = ""  # empty means sys.executable
    pid_file_delete_attempts: int = 3
    poll_rate: float = 2.0
    log_level: str = "WARNING"
    log_json: bool = False

    model_config = {"env_prefix": "PYTEND_"}


settings = PytendSettings()
