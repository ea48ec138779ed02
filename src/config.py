from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    """Application configuration with environment variable support"""

    # Database
    database_url: str = "sqlite:///./fhir_conversion.db"

    # App
    app_name: str = "FHIR Conversion Service"
    debug: bool = False

    # Logging
    log_level: str = "INFO"
    log_json: bool = False  # Structured JSON logs for production

    # Uploaded file staging (empty = <system temp>/fhir_uploads)
    temp_dir: str = ""
    max_upload_size_mb: int = 50

    # Background conversion workers
    conversion_workers: int = 4

    # Terminology network tier (optional, best-effort)
    terminology_lookup_enabled: bool = False
    terminology_server_url: str = "https://tx.fhir.org/r4"
    terminology_timeout_seconds: float = 3.0

    # FHIR output
    default_identifier_system: str = "http://hospital.org/patient-id"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"

settings = Settings()
