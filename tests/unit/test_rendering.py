"""
Tests for the HTML renderer and the email notifiers.

PDF conversion itself needs WeasyPrint's native libraries; these tests cover
the template layer, the disabled paths and the SES call shapes.
"""

from datetime import date
from decimal import Decimal
from email import message_from_string
from uuid import uuid4

import pytest
from botocore.exceptions import ClientError

from amptrack_config.schema import BusinessProfileSettings, NotificationSettings
from amptrack_kernel.domain.dtos import BusinessProfile, DocumentInfo, LineItemInfo
from amptrack_kernel.domain.requests import CustomerSnapshot
from amptrack_kernel.exceptions import ExternalServiceUnavailableError
from amptrack_services.business_profile import StaticBusinessProfileProvider
from amptrack_services.notifications import (
    DisabledNotifier,
    SesNotifier,
    build_notifier,
    email_subject,
    html_to_text,
)
from amptrack_services.rendering import (
    HtmlPdfRenderer,
    format_date,
    format_money,
    format_quantity,
)

PROFILE = BusinessProfile(
    name="Spark & Sons Electric",
    phone="555-0199",
    footer_lines=("Licensed and insured",),
)


def _document(document_type="invoice", **overrides) -> DocumentInfo:
    fields = {
        "id": uuid4(),
        "document_type": document_type,
        "document_number": "INV-2024-0007",
        "title": "Service panel upgrade",
        "description": "",
        "notes": "Net 30",
        "customer": CustomerSnapshot(name="Jane <Homeowner>", email="jane@example.com"),
        "status": "sent",
        "stored_status": "sent",
        "subtotal": Decimal("1250.00"),
        "tax_rate": Decimal("8.00"),
        "tax_amount": Decimal("100.00"),
        "total_amount": Decimal("1350.00"),
        "items": (
            LineItemInfo(1, "200A panel", Decimal("1.000"), Decimal("1250.00"), Decimal("1250.00")),
        ),
        "due_date": date(2024, 7, 15),
    }
    fields.update(overrides)
    return DocumentInfo(**fields)


class TestFilters:

    @pytest.mark.parametrize(
        "value,expected",
        [
            (Decimal("1234.5"), "$1,234.50"),
            (Decimal("0"), "$0.00"),
            (None, "$0.00"),
            (Decimal("-12.3"), "-$12.30"),
        ],
    )
    def test_money(self, value, expected):
        assert format_money(value) == expected

    def test_quantity_strips_trailing_zeros(self):
        assert format_quantity(Decimal("2.000")) == "2"
        assert format_quantity(Decimal("1.250")) == "1.25"

    def test_date(self):
        assert format_date(date(2024, 7, 4)) == "July 04, 2024"
        assert format_date(None) == ""


class TestHtmlPdfRenderer:

    def test_html_contains_document_fields(self):
        html = HtmlPdfRenderer().render_html(_document(), PROFILE)
        assert "INV-2024-0007" in html
        assert "Invoice" in html
        assert "Spark &amp; Sons Electric" in html
        assert "200A panel" in html
        assert "$1,350.00" in html
        assert "July 15, 2024" in html
        assert "Licensed and insured" in html

    def test_customer_text_is_escaped(self):
        html = HtmlPdfRenderer().render_html(_document(), PROFILE)
        assert "Jane &lt;Homeowner&gt;" in html

    def test_change_order_shows_reason(self):
        html = HtmlPdfRenderer().render_html(
            _document("change_order", document_number="CO-2024-0001", reason="Added circuit"),
            PROFILE,
        )
        assert "Change Order" in html
        assert "Added circuit" in html

    def test_disabled_renderer(self):
        renderer = HtmlPdfRenderer(enabled=False)
        assert not renderer.available
        with pytest.raises(ExternalServiceUnavailableError):
            renderer.render(_document(), PROFILE)


class TestBusinessProfile:

    def test_from_settings_defaults_footer(self):
        provider = StaticBusinessProfileProvider.from_settings(
            BusinessProfileSettings(name="Volt Co")
        )
        profile = provider.get_profile()
        assert profile.name == "Volt Co"
        assert profile.footer_lines == ("Thank you for your business!",)


class _FakeSesClient:
    def __init__(self, error: Exception | None = None):
        self.error = error
        self.calls: list[tuple[str, dict]] = []

    def send_email(self, **kwargs):
        self.calls.append(("send_email", kwargs))
        if self.error:
            raise self.error
        return {"MessageId": "ses-1"}

    def send_raw_email(self, **kwargs):
        self.calls.append(("send_raw_email", kwargs))
        if self.error:
            raise self.error
        return {"MessageId": "ses-raw-1"}


def _notifier(client) -> SesNotifier:
    settings = NotificationSettings(
        aws_access_key_id="AKIAEXAMPLE", aws_secret_access_key="secret", from_email="billing@spark.test"
    )
    return SesNotifier(settings, client=client, company_name="Spark & Sons")


class TestSesNotifier:

    def test_subject(self):
        assert email_subject(_document(), "Mike") == "Invoice INV-2024-0007 from Mike"

    def test_plain_send(self):
        client = _FakeSesClient()
        result = _notifier(client).send(_document(), "jane@example.com", "Mike")

        assert result.success
        assert result.message_id == "ses-1"
        name, kwargs = client.calls[0]
        assert name == "send_email"
        assert kwargs["Source"] == "billing@spark.test"
        assert kwargs["Destination"] == {"ToAddresses": ["jane@example.com"]}
        assert kwargs["Message"]["Subject"]["Data"] == "Invoice INV-2024-0007 from Mike"
        assert "200A panel" in kwargs["Message"]["Body"]["Html"]["Data"]
        assert "<" not in kwargs["Message"]["Body"]["Text"]["Data"]

    def test_attachment_uses_raw_email(self):
        client = _FakeSesClient()
        result = _notifier(client).send(
            _document(), "jane@example.com", "Mike", attachment=b"%PDF-1.4 body"
        )

        assert result.message_id == "ses-raw-1"
        name, kwargs = client.calls[0]
        assert name == "send_raw_email"
        message = message_from_string(kwargs["RawMessage"]["Data"])
        attachments = [p for p in message.walk() if p.get_content_type() == "application/pdf"]
        assert len(attachments) == 1
        assert attachments[0].get_filename() == "INV-2024-0007.pdf"
        assert attachments[0].get_payload(decode=True) == b"%PDF-1.4 body"

    def test_provider_rejection_is_reported(self):
        error = ClientError(
            {"Error": {"Code": "MessageRejected", "Message": "Email address is not verified."}},
            "SendEmail",
        )
        result = _notifier(_FakeSesClient(error)).send(_document(), "jane@example.com", "Mike")
        assert not result.success
        assert "not verified" in result.error

    def test_html_to_text(self):
        assert html_to_text("<p>Hello</p>\n\n\n<p>World</p>") == "Hello\n\nWorld"


class TestBuildNotifier:

    def test_placeholder_credentials_disable_email(self):
        notifier = build_notifier(
            NotificationSettings(
                aws_access_key_id="your-aws-access-key-id",
                aws_secret_access_key="your-aws-secret-access-key",
            )
        )
        assert isinstance(notifier, DisabledNotifier)
        assert not notifier.available
        result = notifier.send(_document(), "jane@example.com", "Mike")
        assert not result.success
        assert result.unavailable
