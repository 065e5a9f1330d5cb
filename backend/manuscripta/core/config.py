import os
from dataclasses import dataclass
from typing import Optional


def _env_bool(key: str, default: bool) -> bool:
    raw = os.environ.get(key)
    if raw is None:
        return default
    lowered = raw.strip().lower()
    return lowered in {"1", "true", "yes", "y", "on"}


def _env_int(key: str, default: int) -> int:
    raw = (os.environ.get(key) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(key: str, default: float) -> float:
    raw = (os.environ.get(key) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class AppConfig:
    """
    Application environment config.
    """
    env: str  # 'development', 'staging', 'production'
    is_staging: bool
    supabase_url: str
    supabase_key: str

    @staticmethod
    def from_env() -> "AppConfig":
        env = (os.environ.get("APP_ENV") or "development").strip().lower()
        supabase_url = (os.environ.get("SUPABASE_URL") or "").strip()
        supabase_key = (os.environ.get("SUPABASE_SERVICE_ROLE_KEY") or "").strip()

        return AppConfig(
            env=env,
            is_staging=env == "staging",
            supabase_url=supabase_url,
            supabase_key=supabase_key,
        )


# Immutable; safe to share across requests
app_config = AppConfig.from_env()


@dataclass(frozen=True)
class SMTPConfig:
    """
    SMTP 配置（从环境变量读取）

    中文注释:
    1) 该配置只存在于后端进程内，严禁泄露到前端。
    2) 允许在本地/测试环境缺省（此时邮件发送逻辑会优雅降级为“只记录日志”）。
    """

    host: str
    port: int
    user: Optional[str]
    password: Optional[str]
    from_email: str
    use_starttls: bool

    @staticmethod
    def from_env() -> Optional["SMTPConfig"]:
        host = (os.environ.get("SMTP_HOST") or "").strip()
        if not host:
            return None

        user = (os.environ.get("SMTP_USER") or "").strip() or None
        password = (os.environ.get("SMTP_PASSWORD") or "").strip() or None
        from_email = (
            os.environ.get("SMTP_FROM_EMAIL") or user or "no-reply@manuscripta.local"
        ).strip()

        return SMTPConfig(
            host=host,
            port=_env_int("SMTP_PORT", 587),
            user=user,
            password=password,
            from_email=from_email,
            use_starttls=_env_bool("SMTP_USE_STARTTLS", True),
        )


@dataclass(frozen=True)
class ResendConfig:
    """
    Resend API configuration (production email provider).
    """
    api_key: str
    sender: str

    @staticmethod
    def from_env() -> Optional["ResendConfig"]:
        api_key = (os.environ.get("RESEND_API_KEY") or "").strip()
        if not api_key:
            return None

        sender = (
            os.environ.get("EMAIL_SENDER") or "Manuscripta <onboarding@resend.dev>"
        ).strip()
        return ResendConfig(api_key=api_key, sender=sender)


@dataclass(frozen=True)
class PaymentConfig:
    """
    APC 支付网关配置

    中文注释:
    - gateway_secret_key 为 Stripe secret key，服务端调用 SDK 时按请求传入。
    - webhook_secret 只用于校验回调签名，和 secret key 不可混用。
    - 金额单位为“主币种单位”（如 299.00），调用网关时再换算为最小单位。
    """

    gateway_secret_key: str
    webhook_secret: str
    apc_amount: float
    apc_currency: str
    webhook_tolerance_seconds: int

    @staticmethod
    def from_env() -> "PaymentConfig":
        return PaymentConfig(
            gateway_secret_key=(os.environ.get("STRIPE_SECRET_KEY") or "").strip(),
            webhook_secret=(os.environ.get("STRIPE_WEBHOOK_SECRET") or "").strip(),
            apc_amount=_env_float("APC_AMOUNT", 299.00),
            apc_currency=(os.environ.get("APC_CURRENCY") or "INR").strip().upper(),
            webhook_tolerance_seconds=_env_int("STRIPE_WEBHOOK_TOLERANCE", 300),
        )


@dataclass(frozen=True)
class WorkflowConfig:
    """
    稿件流转相关的可调参数（避免在服务层硬编码）。
    """

    doi_prefix: str
    journal_code: str
    revision_days: int
    review_due_days: int
    require_proof_approval: bool

    @staticmethod
    def from_env() -> "WorkflowConfig":
        return WorkflowConfig(
            doi_prefix=(os.environ.get("DOI_PREFIX") or "10.5555").strip(),
            journal_code=(os.environ.get("JOURNAL_CODE") or "manuscripta").strip().lower(),
            revision_days=_env_int("REVISION_DEADLINE_DAYS", 60),
            review_due_days=_env_int("REVIEW_DUE_DAYS", 21),
            require_proof_approval=_env_bool("REQUIRE_PROOF_APPROVAL", False),
        )


@dataclass(frozen=True)
class SentryConfig:
    dsn: str
    environment: str
    traces_sample_rate: float
    enabled: bool

    @staticmethod
    def from_env() -> "SentryConfig":
        dsn = (os.environ.get("SENTRY_DSN") or "").strip()
        return SentryConfig(
            dsn=dsn,
            environment=(os.environ.get("SENTRY_ENVIRONMENT") or app_config.env).strip(),
            traces_sample_rate=_env_float("SENTRY_TRACES_SAMPLE_RATE", 0.0),
            enabled=_env_bool("SENTRY_ENABLED", bool(dsn)),
        )


def get_admin_api_key() -> Optional[str]:
    """
    内部 Cron 接口鉴权 Key

    中文注释:
    - 仅用于 `/api/v1/internal/cron/*`，避免暴露到公网用户接口。
    """

    raw = os.environ.get("ADMIN_API_KEY")
    return raw.strip() if raw else None
