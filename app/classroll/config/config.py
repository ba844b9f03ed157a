import os
from dotenv import load_dotenv

load_dotenv()

class Config:
    """
    Holds the settings read from environment variables, plainly and directly.
    """
    # Databases
    DATABASE_URL: str = os.environ.get("DATABASE_URL")
    APPLICATION_REDIS_URL: str = os.environ.get("APPLICATION_REDIS_URL")
    RATE_LIMITER_REDIS_URL: str = os.environ.get("RATE_LIMITER_REDIS_URL")

    # Identity provider (Firebase ID tokens)
    FIREBASE_PROJECT_ID: str = os.environ.get("FIREBASE_PROJECT_ID")
    FIREBASE_CERTS_URL: str = os.environ.get(
        "FIREBASE_CERTS_URL",
        "https://www.googleapis.com/robot/v1/metadata/x509/securetoken@system.gserviceaccount.com",
    )
    TEACHER_SESSION_TTL_SECONDS: int = int(os.environ.get("TEACHER_SESSION_TTL_SECONDS", 3600))

    # WhatsApp Cloud API
    WHATSAPP_PHONE_NUMBER_ID: str = os.environ.get("WHATSAPP_PHONE_NUMBER_ID")
    WHATSAPP_ACCESS_TOKEN: str = os.environ.get("WHATSAPP_ACCESS_TOKEN")
    WHATSAPP_API_VERSION: str = os.environ.get("WHATSAPP_API_VERSION", "v22.0")
    WHATSAPP_APP_SECRET: str = os.environ.get("WHATSAPP_APP_SECRET")
    WHATSAPP_VERIFY_TOKEN: str = os.environ.get("WHATSAPP_VERIFY_TOKEN")
    DEFAULT_COUNTRY_CODE: str = os.environ.get("DEFAULT_COUNTRY_CODE", "91")
    NOTIFICATION_DELAY_MS: int = int(os.environ.get("NOTIFICATION_DELAY_MS", 1000))
    COLLEGE_NAME: str = os.environ.get("COLLEGE_NAME", "MLA ACADEMY")
    COLLEGE_CONTACT_PHONE: str = os.environ.get("COLLEGE_CONTACT_PHONE", "+91-1234567890")

    # Outbound HTTP
    HTTP_TIMEOUT_SECONDS: float = float(os.environ.get("HTTP_TIMEOUT_SECONDS", 10))
    HTTP_MAX_ATTEMPTS: int = int(os.environ.get("HTTP_MAX_ATTEMPTS", 3))
    HTTP_RETRY_DELAY_SECONDS: float = float(os.environ.get("HTTP_RETRY_DELAY_SECONDS", 2))

    # Assistant (OpenAI-compatible chat completions endpoint)
    AI_API_URL: str = os.environ.get("AI_API_URL", "https://api.groq.com/openai/v1/chat/completions")
    AI_API_KEY: str = os.environ.get("AI_API_KEY")
    AI_MODEL: str = os.environ.get("AI_MODEL", "llama-3.3-70b-versatile")

    # Logging
    LOG_LEVEL: str = os.environ.get("LOG_LEVEL", "INFO")
    LOG_DIR: str = os.environ.get("LOG_DIR", "logs")

# A single importable instance of the settings
settings = Config()
