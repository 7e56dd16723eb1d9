"""Runtime settings."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="JOURNAL_", extra="ignore")

    app_name: str = "JournalAgent"
    env: str = "dev"
    log_level: str = "info"
    # DEBUG 下是否打印完整请求正文；False 时只打 method/path/headers + body_size
    log_full_request_body: bool = False
    host: str = "127.0.0.1"
    port: int = 18090
    max_request_body_bytes: int = 20_000_000

    llm_api_key: str = ""
    llm_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    llm_model: str = "gemini-2.5-flash"
    llm_temperature: float = Field(default=0.3, ge=0.0, le=2.0)
    llm_max_output_tokens: int = 4000
    llm_timeout_seconds: float = 120.0
    llm_max_connections: int = 100
    llm_max_keepalive_connections: int = 20

    gateway_url: str = ""  # 例如 https://mcp.example.com/mcp?project_ref=xxx&read_only=true
    gateway_access_token: str = ""
    gateway_protocol_version: str = "2024-11-05"
    gateway_client_name: str = "journalagent"
    gateway_timeout_seconds: float = 60.0
    gateway_session_ttl_seconds: int = 600
    tool_cache_ttl_seconds: int = 300
    enable_schema_prewarm: bool = False
    schema_prewarm_interval_seconds: int = 240

    max_turns: int = 15
    max_request_images: int = 4
    max_history_messages: int = 40
    empty_response_max_attempts: int = 3
    empty_response_base_delay_seconds: float = 0.5
    reference_correction_max_attempts: int = 2
    enable_identity_scan: bool = True

    store_backend: str = "memory"  # memory | rest
    store_url: str = ""  # PostgREST 根地址，例如 https://xxx.supabase.co/rest/v1
    store_service_key: str = ""
    store_timeout_seconds: float = 15.0

    serper_api_key: str = ""
    serper_base_url: str = "https://google.serper.dev"
    coingecko_base_url: str = "https://api.coingecko.com/api/v3"
    frankfurter_base_url: str = "https://api.frankfurter.app"
    quickchart_base_url: str = "https://quickchart.io/chart"
    tool_http_timeout_seconds: float = 20.0
    image_fetch_timeout_seconds: float = 20.0
    image_fetch_max_bytes: int = 8_000_000

    agent_rules_path: str = "journalagent/policies/rules/agent_rules.yaml"
    log_dir: str = "logs"
    log_file_name: str = "journalagent.log"
    audit_log_path: str = "logs/agent_audit.jsonl"  # 空串表示不写审计文件


settings = Settings()
