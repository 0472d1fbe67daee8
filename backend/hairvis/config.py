from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    model_config = {
        "env_file": "../.env",
        "extra": "ignore",
        "env_prefix": "",
        "case_sensitive": False,
    }

    # Hosted backend (auth, lead store, activity log, edge functions)
    supabase_url: str = ""
    supabase_anon_key: str = ""
    leads_table: str = "leads"
    activity_log_table: str = "analysis_logs"

    # AI APIs
    google_ai_api_key: str = ""
    gemini_analysis_model: str = "gemini-3-pro-preview"
    gemini_image_model: str = "gemini-2.5-flash-image"
    service_timeout_seconds: float = 150.0

    # Collaborator selection: "mock" | "gemini" | "edge" and "mock" | "supabase"
    service_backend: str = "mock"
    identity_backend: str = "mock"

    # Drafts
    draft_dir: str = ""
    draft_quota_bytes: int = 5 * 1024 * 1024

    # Flow
    default_language: str = "EN"
    eager_analysis: bool = True
    lead_price: int = 65

    # App
    environment: str = "development"
    log_level: str = "INFO"
    log_file: str = ""


settings = Settings()
