from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    PROJECT_NAME: str = "ExpenseTracker Pro"
    API_V1_STR: str = "/api/v1"
    SECRET_KEY: str = "super_secret_key_change_me_in_prod"
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str = "sqlite:///./expense_tracker.db"

    # OpenAI (REST)
    OPENAI_API_KEY: str = ""
    OPENAI_API_URL: str = "https://api.openai.com/v1/chat/completions"
    OPENAI_MODEL: str = "gpt-4o"
    OPENAI_TIMEOUT_SECONDS: int = 60
    HTTP_TIMEOUT_SECONDS: int = 20

    # SMTP
    SMTP_HOST: str = "smtp.gmail.com"
    SMTP_PORT: int = 587
    SMTP_USER: str = ""
    SMTP_PASS: str = ""
    SMTP_FROM: str = '"ExpenseTracker Pro" <noreply@expensetracker.com>'

    # Gmail OAuth
    GMAIL_CLIENT_ID: str = ""
    GMAIL_CLIENT_SECRET: str = ""
    GMAIL_REDIRECT_URI: str = "http://localhost:8000/api/v1/gmail/callback"
    GMAIL_MAX_RESULTS: int = 20

    # Receipt images
    UPLOAD_DIR: str = "uploads"
    # Comma-separated hosts receiptImageURL may point at; empty allows any host
    REMOTE_IMAGE_HOSTS: str = ""

    # Ingestion workers
    INGESTION_WORKERS: int = 2
    INGESTION_MAX_ATTEMPTS: int = 2

    # 0 keeps every threshold crossing as a new alert
    BUDGET_ALERT_COOLDOWN_MINUTES: int = 0

    model_config = SettingsConfigDict(env_file=".env", env_ignore_empty=True, extra="ignore")

settings = Settings()
