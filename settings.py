import os

from dotenv import load_dotenv

load_dotenv()

# Database
DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

# Security settings
SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-key-change-me")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", str(60 * 24 * 30)))
BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "12"))
RESET_TOKEN_EXPIRE_MINUTES = 60

# Site
SITE_URL = os.getenv("SITE_URL", "http://localhost:3000").rstrip("/")
SITE_NAME = os.getenv("SITE_NAME", "Quillpress")
SITE_DESCRIPTION = os.getenv(
    "SITE_DESCRIPTION", "Stories, guides and recipes from independent authors"
)
APP_ENV = os.getenv("APP_ENV", "development")

# Roles
INITIAL_ADMIN_EMAILS = [
    e.strip().lower() for e in os.getenv("INITIAL_ADMIN_EMAILS", "").split(",") if e.strip()
]
MAX_ADMINS = int(os.getenv("MAX_ADMINS", "3"))

# Email
RESEND_API_KEY = os.getenv("RESEND_API_KEY")
EMAIL_FROM = os.getenv("EMAIL_FROM", "newsletter@quillpress.dev")
EMAIL_FROM_NAME = os.getenv("EMAIL_FROM_NAME", SITE_NAME)

# HTTP
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
PORT = int(os.getenv("PORT", "8000"))


def is_development() -> bool:
    return APP_ENV.lower() == "development"
