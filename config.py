import os
import logging
from dataclasses import dataclass, field

from constants import DEFAULT_UPLOAD_URL_TTL, DEFAULT_DOWNLOAD_URL_TTL
from utils.env import get_env_str, get_env_bool, get_env_int

logger = logging.getLogger(__name__)

BASE_DIR = os.path.abspath(os.path.dirname(__file__))

# -----------------------------------------------------------------------------
# Dotenv loading (LOCAL ONLY)
# -----------------------------------------------------------------------------
# Rules:
# - Railway must be configured via real environment variables (Railway dashboard).
# - Tests must be deterministic and must NOT implicitly ingest a developer's repo-root .env.
# - Local dev may use .env for convenience.
_RUNNING_ON_RAILWAY = bool(os.getenv("RAILWAY_ENVIRONMENT") or os.getenv("RAILWAY_PROJECT_ID"))
_FLASK_ENV_EARLY = (os.getenv("FLASK_ENV") or "").strip().lower()

if (not _RUNNING_ON_RAILWAY) and (_FLASK_ENV_EARLY not in {"test", "testing"}):
    try:
        from dotenv import load_dotenv
        load_dotenv(dotenv_path=os.path.join(BASE_DIR, ".env"), override=False)
    except ImportError:
        pass

DEV_SECRET_KEY = "dev-secret-key-change-this"


def _normalize_stage(raw: str) -> str:
    raw = (raw or "").strip().lower()
    if raw in {"prod", "production"}:
        return "production"
    if raw in {"stage", "staging"}:
        return "staging"
    if raw in {"test", "testing"}:
        return "test"
    return "dev"


def _strip_trailing_slash(url: str) -> str:
    return url[:-1] if url.endswith("/") else url


@dataclass(frozen=True)
class BankDetails:
    """Static bank-transfer fields printed on every order."""
    beneficiary: str = ""
    bank_name: str = ""
    account: str = ""
    iban: str = ""
    swift: str = ""
    currency: str = "USD"
    note: str = "Use the ORDER NUMBER as the payment reference."

    def to_dict(self) -> dict:
        return {
            "beneficiary": self.beneficiary,
            "bankName": self.bank_name,
            "account": self.account,
            "iban": self.iban,
            "swift": self.swift,
            "currency": self.currency,
            "note": self.note,
        }


@dataclass(frozen=True)
class Settings:
    """
    Process-wide configuration, built once by load_settings() at startup and
    passed by reference into the services. Nothing below app.py reads the
    environment.
    """
    app_stage: str = "dev"
    secret_key: str = DEV_SECRET_KEY
    base_url: str = "http://localhost:5000"
    instance_dir: str = os.path.join(BASE_DIR, "instance")

    # Storage
    storage_backend: str = "local"
    s3_bucket: str = ""
    s3_prefix: str = ""
    s3_endpoint_url: str = ""
    aws_region: str = "us-east-1"
    aws_access_key_id: str = ""
    aws_secret_access_key: str = ""
    storage_timeout_seconds: int = 10
    upload_url_ttl: int = DEFAULT_UPLOAD_URL_TTL
    download_url_ttl: int = DEFAULT_DOWNLOAD_URL_TTL
    upload_policy: str = "temp"
    finalize_concurrency: int = 4
    max_upload_mb: int = 100
    draft_max_age_hours: int = 72

    # Email
    email_provider: str = "none"
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_pass: str = ""
    smtp_use_tls: bool = True
    resend_api_key: str = ""
    email_timeout_seconds: int = 10
    orders_email_to: str = ""
    orders_email_from: str = "orders@localhost"

    # Orders
    order_no_prefix: str = "LIV"
    bank: BankDetails = field(default_factory=BankDetails)

    @property
    def is_production(self) -> bool:
        return self.app_stage == "production"

    @property
    def is_staging(self) -> bool:
        return self.app_stage == "staging"

    @property
    def is_test(self) -> bool:
        return self.app_stage == "test"

    @property
    def currency(self) -> str:
        return self.bank.currency


def load_settings() -> Settings:
    """Read the environment once and enforce the per-stage safety rails."""
    flask_env = (os.getenv("FLASK_ENV", "development") or "development").strip().lower()
    stage = _normalize_stage(os.getenv("APP_STAGE", "dev"))
    if flask_env in {"test", "testing"} and stage == "dev":
        stage = "test"

    is_secure = stage in {"staging", "production"}

    secret_key = get_env_str("SECRET_KEY")
    if not secret_key:
        if is_secure:
            raise ValueError(f"SECRET_KEY must be set in {stage} environment.")
        secret_key = DEV_SECRET_KEY
        logger.warning("[Config] WARNING: Using default SECRET_KEY for development. DO NOT use in real environments!")
    elif is_secure and secret_key == DEV_SECRET_KEY:
        raise ValueError(f"SAFETY RAIL: The development SECRET_KEY is forbidden in {stage}.")

    storage_backend = get_env_str("STORAGE_BACKEND", default="local").lower()
    if storage_backend not in {"local", "s3"}:
        raise ValueError(f"STORAGE_BACKEND must be 'local' or 's3'. Got: {storage_backend}")
    if stage == "production" and storage_backend != "s3":
        raise RuntimeError("CRITICAL: STORAGE_BACKEND must be 's3' in production.")
    if stage == "staging" and storage_backend != "s3":
        logger.warning("[Config] WARNING: STORAGE_BACKEND is not 's3' in staging. Expect drift vs production.")

    s3_bucket = get_env_str("S3_BUCKET", default="")
    if storage_backend == "s3" and not s3_bucket:
        raise RuntimeError("CRITICAL: S3_BUCKET must be set when STORAGE_BACKEND=s3.")

    region = get_env_str("AWS_REGION", default="us-east-1")
    if " " in region or not region.replace("-", "").isalnum():
        logger.warning(f"[Config] WARNING: Invalid AWS_REGION detected: '{region}'. Defaulting to 'us-east-1'.")
        region = "us-east-1"

    upload_policy = get_env_str("UPLOAD_POLICY", default="temp").lower()
    if upload_policy not in {"temp", "direct"}:
        raise ValueError(f"UPLOAD_POLICY must be 'temp' or 'direct'. Got: {upload_policy}")

    email_provider = get_env_str("EMAIL_PROVIDER", default="none").lower()
    if email_provider not in {"smtp", "resend", "none"}:
        raise ValueError(f"EMAIL_PROVIDER must be one of smtp, resend, none. Got: {email_provider}")

    orders_email_to = get_env_str("ORDERS_EMAIL_TO", default="")
    if is_secure and email_provider != "none" and not orders_email_to:
        logger.warning("[Config] WARNING: ORDERS_EMAIL_TO is empty; operations will not receive order emails.")

    bank = BankDetails(
        beneficiary=get_env_str("BANK_BENEFICIARY", default=""),
        bank_name=get_env_str("BANK_NAME", default=""),
        account=get_env_str("BANK_ACCOUNT", default=""),
        iban=get_env_str("BANK_IBAN", default=""),
        swift=get_env_str("BANK_SWIFT", default=""),
        currency=get_env_str("CURRENCY", default="USD").upper(),
    )

    instance_dir = get_env_str("INSTANCE_DIR", default=os.path.join(BASE_DIR, "instance"))
    try:
        os.makedirs(instance_dir, exist_ok=True)
    except OSError as e:
        logger.warning(
            f"[Config] WARNING: Could not create INSTANCE_DIR at {instance_dir} ({e}). Falling back to /tmp/instance."
        )
        instance_dir = os.path.join("/tmp", "instance")
        os.makedirs(instance_dir, exist_ok=True)

    return Settings(
        app_stage=stage,
        secret_key=secret_key,
        base_url=_strip_trailing_slash(get_env_str("BASE_URL", default="http://localhost:5000")),
        instance_dir=instance_dir,
        storage_backend=storage_backend,
        s3_bucket=s3_bucket,
        s3_prefix=get_env_str("S3_PREFIX", default=""),
        s3_endpoint_url=get_env_str("S3_ENDPOINT_URL", default=""),
        aws_region=region,
        aws_access_key_id=get_env_str("AWS_ACCESS_KEY_ID", default=""),
        aws_secret_access_key=get_env_str("AWS_SECRET_ACCESS_KEY", default=""),
        storage_timeout_seconds=get_env_int("STORAGE_TIMEOUT_SECONDS", 10),
        upload_url_ttl=get_env_int("UPLOAD_URL_TTL_SECONDS", DEFAULT_UPLOAD_URL_TTL),
        download_url_ttl=get_env_int("DOWNLOAD_URL_TTL_SECONDS", DEFAULT_DOWNLOAD_URL_TTL),
        upload_policy=upload_policy,
        finalize_concurrency=max(1, get_env_int("FINALIZE_CONCURRENCY", 4)),
        max_upload_mb=get_env_int("MAX_UPLOAD_MB", 100),
        draft_max_age_hours=get_env_int("DRAFT_MAX_AGE_HOURS", 72),
        email_provider=email_provider,
        smtp_host=get_env_str("SMTP_HOST", default=""),
        smtp_port=get_env_int("SMTP_PORT", 587),
        smtp_user=get_env_str("SMTP_USER", default=""),
        # Gmail app passwords are displayed with spaces
        smtp_pass=(get_env_str("SMTP_PASS", default="") or "").replace(" ", ""),
        smtp_use_tls=get_env_bool("SMTP_USE_TLS", default=True),
        resend_api_key=get_env_str("RESEND_API_KEY", default=""),
        email_timeout_seconds=get_env_int("EMAIL_TIMEOUT_SECONDS", 10),
        orders_email_to=orders_email_to,
        orders_email_from=get_env_str("ORDERS_EMAIL_FROM", default="orders@localhost"),
        order_no_prefix=get_env_str("ORDER_NO_PREFIX", default="LIV").upper(),
        bank=bank,
    )
