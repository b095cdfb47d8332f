"""
Service configuration.

Values are read from the environment (a local `.env` file is loaded first)
into a `Settings` instance. Services receive the instance explicitly so tests
can build their own without touching os.environ.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional
from dotenv import load_dotenv
import os

ROOT_DIR = Path(__file__).parent


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    value = raw.strip().lower()
    if value in ("true", "1", "yes"):
        return True
    if value in ("false", "0", "no"):
        return False
    raise ValueError(f"{name} must be a boolean true/false, got '{raw}'")


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    return int(raw)


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    return float(raw)


@dataclass
class RetentionSettings:
    """Retention prefixes and thresholds for agreement PDFs in object storage"""
    base_term_prefix: str = "base"
    extended_term_prefix: str = "extended"
    maximum_term_prefix: str = "maximum"
    base_term_threshold: int = 10
    extended_term_threshold: int = 15
    maximum_term_threshold: int = 20
    retention_base_years: int = 7


@dataclass
class Settings:
    env: str = "development"
    log_level: str = "INFO"

    # MongoDB
    mongo_uri: str = "mongodb://127.0.0.1:27017/"
    mongo_database: str = "farming-grants-agreements-api"

    # Outbound HTTP
    http_timeout_seconds: float = 30.0
    land_grants_uri: str = "http://localhost:3003"
    land_grants_token: str = ""

    # Payment hub
    payment_hub_enabled: bool = False
    payment_hub_uri: str = "https://paymenthub/"
    payment_hub_ttl: int = 86400
    payment_hub_key_name: str = "MyManagedAccessKey"
    payment_hub_key: str = "my_key"

    # AWS
    aws_region: str = "eu-west-2"
    sns_endpoint: Optional[str] = None
    sns_max_attempts: int = 3
    sns_event_source: str = "urn:service:agreement"
    sns_topic_arn_status_updated: str = "arn:aws:sns:eu-west-2:000000000000:agreement_status_updated"
    sns_topic_type_status_updated: str = "io.onsite.agreement.status.updated"
    sqs_endpoint: Optional[str] = None
    sqs_create_queue_url: str = "http://localhost:4566/000000000000/create_agreement"
    sqs_application_updated_queue_url: str = "http://localhost:4566/000000000000/gas_application_status_updated"
    sqs_max_messages: int = 1
    sqs_wait_time_seconds: int = 5
    sqs_visibility_timeout: int = 10

    # Object storage
    files_s3_bucket: str = ""
    files_s3_region: str = "eu-west-2"
    files_s3_endpoint: Optional[str] = None
    retention: RetentionSettings = field(default_factory=RetentionSettings)

    # Web
    view_agreement_uri: str = "http://localhost:3555"
    jwt_secret: str = "default-agreements-jwt-secret"
    jwt_enabled: bool = True


def load_settings(env_file: Optional[Path] = None) -> Settings:
    """Build Settings from the process environment"""
    load_dotenv(env_file or ROOT_DIR / ".env")

    retention = RetentionSettings(
        base_term_prefix=os.environ.get("FILES_S3_BASE_TERM_PREFIX", "base"),
        extended_term_prefix=os.environ.get("FILES_S3_EXTENDED_TERM_PREFIX", "extended"),
        maximum_term_prefix=os.environ.get("FILES_S3_MAXIMUM_TERM_PREFIX", "maximum"),
        base_term_threshold=_env_int("FILES_S3_BASE_TERM_THRESHOLD", 10),
        extended_term_threshold=_env_int("FILES_S3_EXTENDED_TERM_THRESHOLD", 15),
        maximum_term_threshold=_env_int("FILES_S3_MAXIMUM_TERM_THRESHOLD", 20),
        retention_base_years=_env_int("FILES_S3_RETENTION_BASE_YEARS", 7),
    )

    return Settings(
        env=os.environ.get("APP_ENV", "development"),
        log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        mongo_uri=os.environ.get("MONGO_URI", "mongodb://127.0.0.1:27017/"),
        mongo_database=os.environ.get("MONGO_DATABASE", "farming-grants-agreements-api"),
        http_timeout_seconds=_env_float("HTTP_TIMEOUT_SECONDS", 30.0),
        land_grants_uri=os.environ.get("LAND_GRANTS_URI", "http://localhost:3003"),
        land_grants_token=os.environ.get("LAND_GRANTS_TOKEN", ""),
        payment_hub_enabled=_env_bool("ENABLE_PAYMENT_HUB", False),
        payment_hub_uri=os.environ.get("PAYMENT_HUB_URI", "https://paymenthub/"),
        payment_hub_ttl=_env_int("PAYMENT_HUB_TTL", 86400),
        payment_hub_key_name=os.environ.get("PAYMENT_HUB_SA_KEY_NAME", "MyManagedAccessKey"),
        payment_hub_key=os.environ.get("PAYMENT_HUB_SA_KEY", "my_key"),
        aws_region=os.environ.get("AWS_REGION", "eu-west-2"),
        sns_endpoint=os.environ.get("SNS_ENDPOINT") or None,
        sns_max_attempts=_env_int("SNS_MAX_ATTEMPTS", 3),
        sns_event_source=os.environ.get("SNS_EVENT_SOURCE", "urn:service:agreement"),
        sns_topic_arn_status_updated=os.environ.get(
            "SNS_TOPIC_ARN_AGREEMENT_STATUS_UPDATED",
            "arn:aws:sns:eu-west-2:000000000000:agreement_status_updated"
        ),
        sns_topic_type_status_updated=os.environ.get(
            "SNS_TOPIC_TYPE_AGREEMENT_STATUS_UPDATED",
            "io.onsite.agreement.status.updated"
        ),
        sqs_endpoint=os.environ.get("SQS_ENDPOINT") or None,
        sqs_create_queue_url=os.environ.get(
            "QUEUE_URL", "http://localhost:4566/000000000000/create_agreement"
        ),
        sqs_application_updated_queue_url=os.environ.get(
            "SQS_GAS_APPLICATION_STATUS_UPDATED_QUEUE_URL",
            "http://localhost:4566/000000000000/gas_application_status_updated"
        ),
        sqs_max_messages=_env_int("MAX_NUMBER_OF_MESSAGES", 1),
        sqs_wait_time_seconds=_env_int("WAIT_TIME_SECONDS", 5),
        sqs_visibility_timeout=_env_int("VISIBILITY_TIMEOUT", 10),
        files_s3_bucket=os.environ.get("FILES_S3_BUCKET", ""),
        files_s3_region=os.environ.get("FILES_S3_REGION", "eu-west-2"),
        files_s3_endpoint=os.environ.get("AWS_S3_ENDPOINT") or None,
        retention=retention,
        view_agreement_uri=os.environ.get("VIEW_AGREEMENT_URI", "http://localhost:3555"),
        jwt_secret=os.environ.get("AGREEMENTS_JWT_SECRET", "default-agreements-jwt-secret"),
        jwt_enabled=_env_bool("JWT_ENABLED", True),
    )
