from pydantic_settings import BaseSettings, SettingsConfigDict


class GatewayConfig(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="INTAKE_GATEWAY_")

    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"
    max_user_log_limit: int = 500
