from pydantic_settings import BaseSettings
from pydantic import Field
import os
from pathlib import Path
import dotenv

# Always load apps/.env (relative to this file), regardless of where the process is started.
_APPS_DIR = Path(__file__).resolve().parents[1]
dotenv.load_dotenv(dotenv_path=_APPS_DIR / ".env", override=False)


class Settings(BaseSettings):
    APP_HOST: str = Field(default=os.getenv("APP_HOST", "0.0.0.0"))
    APP_PORT: int = Field(default=int(os.getenv("APP_PORT", "8000")))
    FRONTEND_BASE_URL: str = Field(default=os.getenv("FRONTEND_BASE_URL", "http://localhost:3000"))
    LOG_LEVEL: str = Field(default=os.getenv("LOG_LEVEL", "INFO"))

    # Firebase Admin SDK
    # Service account JSON; when missing, application-default credentials are used.
    FIREBASE_CREDENTIALS_PATH: str = Field(
        default=os.getenv("FIREBASE_CREDENTIALS_PATH", str(_APPS_DIR / "serviceAccountKey.json"))
    )
    FIREBASE_STORAGE_BUCKET: str = Field(default=os.getenv("FIREBASE_STORAGE_BUCKET", ""))

    # Company identity printed on invoice PDFs.
    COMPANY_NAME: str = Field(default=os.getenv("COMPANY_NAME", "Holloway Logistics"))
    COMPANY_TAGLINE: str = Field(default=os.getenv("COMPANY_TAGLINE", "Transportation Management System"))
    COMPANY_PHONE: str = Field(default=os.getenv("COMPANY_PHONE", "(555) 123-4567"))
    BILLING_EMAIL: str = Field(default=os.getenv("BILLING_EMAIL", "billing@hollowaylogistics.com"))

    # ---------------------------------------------------------------------
    # Billing
    #
    # Notes:
    # - Payment terms come from the customer record; this is the Net-N fallback.
    # - Paid invoices older than the lookback window drop out of the summary.
    # ---------------------------------------------------------------------
    DEFAULT_PAYMENT_TERMS_DAYS: int = Field(default=int(os.getenv("DEFAULT_PAYMENT_TERMS_DAYS", "30")))
    PAID_LOOKBACK_DAYS: int = Field(default=int(os.getenv("PAID_LOOKBACK_DAYS", "30")))

    # Invoice PDFs are stored under this folder inside the storage bucket.
    INVOICE_STORAGE_FOLDER: str = Field(default=os.getenv("INVOICE_STORAGE_FOLDER", "invoices"))
    INVOICE_PDF_URL_TTL_SECONDS: int = Field(default=int(os.getenv("INVOICE_PDF_URL_TTL_SECONDS", "3600")))

    # If true, a PDF is rendered and stored in the background right after invoice creation.
    AUTO_GENERATE_INVOICE_PDF: bool = Field(
        default=(os.getenv("AUTO_GENERATE_INVOICE_PDF", "true").strip().lower() == "true")
    )

    class Config:
        env_file = ".env"
        extra = "ignore"  # Ignore frontend-only keys like NEXT_PUBLIC_*


settings = Settings()
