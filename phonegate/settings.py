import os
from dotenv import load_dotenv

load_dotenv()

class Settings:
    API_KEY: str = os.getenv("API_KEY", "")
    CORS_ORIGINS: str = os.getenv("CORS_ORIGINS", "*")

    REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    RQ_QUEUE_NAME: str = os.getenv("RQ_QUEUE_NAME", "profile_sync")

    # Client-side race timers (seconds)
    DISPATCH_TIMEOUT_SEC: float = float(os.getenv("DISPATCH_TIMEOUT_SEC", "30"))
    CONFIRM_TIMEOUT_SEC: float = float(os.getenv("CONFIRM_TIMEOUT_SEC", "20"))
    PROFILE_SYNC_WINDOW_SEC: float = float(os.getenv("PROFILE_SYNC_WINDOW_SEC", "5"))

    # Code entry
    MAX_CODE_ATTEMPTS: int = int(os.getenv("MAX_CODE_ATTEMPTS", "5"))
    CODE_TTL_SEC: int = int(os.getenv("CODE_TTL_SEC", "600"))  # 10 minutes
    SESSION_TTL_SEC: int = int(os.getenv("SESSION_TTL_SEC", "3600"))

    # Policy: "allowlist" only fails open on provider-unavailable/timeout/network-error,
    # "broad" fails open on every unlisted provider error.
    FAIL_OPEN_MODE: str = os.getenv("FAIL_OPEN_MODE", "allowlist").lower()

    # Phone parsing
    DEFAULT_REGION: str = os.getenv("DEFAULT_REGION", "CA")
    SUPPORTED_REGIONS: str = os.getenv("SUPPORTED_REGIONS", "CA,US,BE,FR,DE,NL,GB,ES,IT")

    # Provider backend: twilio_verify | sms_service | stub
    OTP_PROVIDER: str = os.getenv("OTP_PROVIDER", "stub").lower()
    TWILIO_ACCOUNT_SID: str = os.getenv("TWILIO_ACCOUNT_SID", "")
    TWILIO_AUTH_TOKEN: str = os.getenv("TWILIO_AUTH_TOKEN", "")
    TWILIO_VERIFY_SERVICE_SID: str = os.getenv("TWILIO_VERIFY_SERVICE_SID", "")
    TWILIO_TIMEOUT_SECONDS: int = int(os.getenv("TWILIO_TIMEOUT_SECONDS", "10"))

    SMS_SERVICE_URL: str = os.getenv("SMS_SERVICE_URL", "")
    SMS_SERVICE_TOKEN: str = os.getenv("SMS_SERVICE_TOKEN", "")
    SMS_TIMEOUT_SEC: float = float(os.getenv("SMS_TIMEOUT_SEC", "10"))
    SMS_MESSAGE_TEMPLATE: str = os.getenv(
        "SMS_MESSAGE_TEMPLATE", "Your verification code is: {code}. Valid for 10 minutes."
    )

    # Challenge verification (server-side token check)
    RECAPTCHA_SECRET: str = os.getenv("RECAPTCHA_SECRET", "")
    RECAPTCHA_VERIFY_URL: str = os.getenv(
        "RECAPTCHA_VERIFY_URL", "https://www.google.com/recaptcha/api/siteverify"
    )
    RECAPTCHA_TIMEOUT_SEC: float = float(os.getenv("RECAPTCHA_TIMEOUT_SEC", "5"))

    # Stub provider
    OTP_DEV_ALLOWLIST: str = os.getenv("OTP_DEV_ALLOWLIST", "")
    ENV: str = os.getenv("ENV", "dev").lower()

    # Background profile sync
    PROFILE_SYNC_MAX_RETRIES: int = int(os.getenv("PROFILE_SYNC_MAX_RETRIES", "5"))

    # Debug snapshots of sessions for the admin view
    STORE_SESSION_SNAPSHOTS: bool = os.getenv("STORE_SESSION_SNAPSHOTS", "true").lower() == "true"

    # Security & privacy
    ENABLE_PII_REDACTION: bool = os.getenv("ENABLE_PII_REDACTION", "true").lower() == "true"
    ADMIN_RBAC_ENABLED: bool = os.getenv("ADMIN_RBAC_ENABLED", "true").lower() == "true"
    ADMIN_API_KEY: str = os.getenv("ADMIN_API_KEY", "")

settings = Settings()
