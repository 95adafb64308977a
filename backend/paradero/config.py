from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    red_base_url: str = "https://www.red.cl"
    red_predictor_token: str = ""
    directions_base_url: str = "https://api.mapbox.com"
    mapbox_token: str = ""
    http_timeout_seconds: float = 8.0
    sync_interval_ms: int = 5000
    sync_frame_ms: int = 16
    geolocation_timeout_seconds: float = 5.0
    geolocation_max_retries: int = 3
    geolocation_retry_delay_seconds: float = 1.0
    geolocation_watch_seconds: float = 5.0
    geolocation_maximum_age_seconds: float = 0.1
    stop_codes_refresh_hours: int = 24

    model_config = {"env_prefix": "", "case_sensitive": False}


settings = Settings()
