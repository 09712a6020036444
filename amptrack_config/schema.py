"""
Settings schema.

Frozen dataclasses parsed from YAML by ``amptrack_config.loader``.  The
kernel never imports this package; ``amptrack_services.engine`` translates
settings into constructor arguments.
"""

from __future__ import annotations

from dataclasses import dataclass, field

PLACEHOLDER_MARKERS = ("your_", "your-", "_here", "changeme")


def is_placeholder(value: str | None) -> bool:
    """True for empty values and the example secrets shipped in templates."""
    if not value:
        return True
    lowered = value.lower()
    return any(marker in lowered for marker in PLACEHOLDER_MARKERS)


@dataclass(frozen=True)
class DatabaseSettings:
    url: str = "sqlite:///amptrack.db"
    echo: bool = False
    pool_size: int = 20
    max_overflow: int = 10
    pool_timeout: int = 30


@dataclass(frozen=True)
class NumberingSettings:
    prefixes: dict[str, str] = field(
        default_factory=lambda: {"estimate": "EST", "invoice": "INV", "change_order": "CO"}
    )


@dataclass(frozen=True)
class RenderingSettings:
    enabled: bool = True
    timeout_seconds: float = 30.0
    render_on_create: bool = True
    storage_dir: str = "./storage/artifacts"
    template_dir: str | None = None


@dataclass(frozen=True)
class NotificationSettings:
    enabled: bool = True
    aws_region: str = "us-east-1"
    aws_access_key_id: str | None = None
    aws_secret_access_key: str | None = None
    from_email: str = "noreply@example.com"
    attach_pdf: bool = True

    @property
    def configured(self) -> bool:
        return (
            self.enabled
            and not is_placeholder(self.aws_access_key_id)
            and not is_placeholder(self.aws_secret_access_key)
        )


@dataclass(frozen=True)
class PaymentSettings:
    enabled: bool = True
    currency: str = "usd"
    secret_key: str | None = None
    publishable_key: str | None = None
    webhook_secret: str | None = None
    api_base: str = "https://api.stripe.com"
    timeout_seconds: float = 20.0
    webhook_tolerance_seconds: int = 300

    @property
    def configured(self) -> bool:
        return self.enabled and not is_placeholder(self.secret_key)


@dataclass(frozen=True)
class BusinessProfileSettings:
    name: str = "AmpTrack Electrical"
    address: str = ""
    phone: str = ""
    email: str = ""
    website: str = ""
    logo_url: str | None = None
    footer_lines: tuple[str, ...] = ()


@dataclass(frozen=True)
class ProjectSettings:
    default_folders: tuple[str, ...] = (
        "Bidding",
        "Plans and Drawings",
        "Plan Review",
        "Field Markups",
    )


@dataclass(frozen=True)
class LoggingSettings:
    level: str = "INFO"


@dataclass(frozen=True)
class AppSettings:
    database: DatabaseSettings = field(default_factory=DatabaseSettings)
    numbering: NumberingSettings = field(default_factory=NumberingSettings)
    rendering: RenderingSettings = field(default_factory=RenderingSettings)
    notification: NotificationSettings = field(default_factory=NotificationSettings)
    payments: PaymentSettings = field(default_factory=PaymentSettings)
    business_profile: BusinessProfileSettings = field(default_factory=BusinessProfileSettings)
    projects: ProjectSettings = field(default_factory=ProjectSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)
