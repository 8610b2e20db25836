"""
Application configuration loaded from environment variables / .env file.
"""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Control proxy
    api_host: str = "0.0.0.0"
    api_port: int = 3001
    debug: bool = False

    # Discovery transports
    enable_mdns: bool = True
    enable_ble: bool = True
    mdns_service_type: str = "_lobster-lock._tcp.local."
    mdns_resolve_timeout_ms: int = 3000
    radar_sweep_interval: float = 60.0
    ble_service_uuid: str = "5a160000-8334-469b-a316-c340cf29188f"

    # Registry upkeep
    health_check_interval: float = 10.0
    health_check_timeout: float = 2.0
    health_failure_threshold: int = 3
    prune_interval: float = 30.0
    stale_after: float = 300.0

    # Reference lock device (app.lock.server)
    lock_device_id: str = "Mock-LobsterLock"
    lock_version: str = "v1.4-mock"
    lock_build_type: str = "mock"
    lock_port: int = 3003
    lock_announce: bool = True
    lock_features: list[str] = ["footPedal", "startCountdown", "statusLed"]
    lock_enable_streaks: bool = True
    lock_enable_payback: bool = True
    lock_payback_duration_seconds: int = 600
    lock_enable_reward_code: bool = True
    lock_test_duration_seconds: int = 60
    lock_armed_timeout_seconds: int = 600
    lock_keepalive_timeout_seconds: float = 120.0
    lock_log_buffer_size: int = 50

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
