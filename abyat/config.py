from pydantic import model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    verify_token: str | None = None
    access_token: str | None = None
    phone_number_id: str | None = None
    graph_api_version: str = "v21.0"
    graph_api_base_url: str = "https://graph.facebook.com"

    authorize_token: str | None = None
    agent_start_endpoint: str = "https://api.gettaskagent.com/api/user/agent/start/691029772222bd196b5c8f41"
    edit_agent_start_endpoint: str = "https://api.gettaskagent.com/api/user/agent/start/690f135b40eebb79503aa541"
    file_upload_endpoint: str = "https://api.gettaskagent.com/api/file/upload"
    agent_subdomain: str = "construex"
    agent_user_type: str = "customer"

    gateway_url: str | None = None

    session_timeout_seconds: float = 300
    edit_session_timeout_seconds: float = 120
    preview_retry_seconds: float = 30
    min_preview_count: int = 4
    preview_send_delay_seconds: float = 0.6

    dedup_ttl_seconds: float = 3600
    dedup_max_entries: int = 10000

    http_timeout_seconds: float = 30.0
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        extra = "ignore"

    @model_validator(mode="after")
    def check_edit_window(self) -> "Settings":
        # the main expiry drops the whole session, edit expiry must come first
        if self.edit_session_timeout_seconds >= self.session_timeout_seconds:
            raise ValueError("edit_session_timeout_seconds must be shorter than session_timeout_seconds")
        return self


settings = Settings()
