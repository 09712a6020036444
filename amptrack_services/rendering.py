"""
HTML/PDF document renderer.

Renders a DocumentInfo through a Jinja2 template and converts the HTML to
PDF with WeasyPrint.  WeasyPrint needs native libraries (Pango, cairo), so
it is imported when a render runs; a host without them reports the
renderer unavailable instead of failing at import time.
"""

from __future__ import annotations

import importlib.util
from decimal import Decimal
from pathlib import Path
from typing import Any

from jinja2 import Environment, FileSystemLoader, select_autoescape

from amptrack_kernel.domain.dtos import BusinessProfile, DocumentInfo
from amptrack_kernel.exceptions import ExternalServiceUnavailableError, RenderFailureError
from amptrack_kernel.logging_config import get_logger

logger = get_logger("services.rendering")

TEMPLATES_DIR = Path(__file__).parent / "templates"

DOCUMENT_TEMPLATE = "document.html"

DOCUMENT_HEADINGS = {
    "estimate": "Estimate",
    "invoice": "Invoice",
    "change_order": "Change Order",
}


def format_money(value: Any) -> str:
    if value is None:
        return "$0.00"
    amount = Decimal(str(value)).quantize(Decimal("0.01"))
    sign = "-" if amount < 0 else ""
    return f"{sign}${abs(amount):,.2f}"


def format_quantity(value: Any) -> str:
    if value is None:
        return "0"
    text = format(Decimal(str(value)).normalize(), "f")
    return text


def format_date(value: Any) -> str:
    if value is None:
        return ""
    return value.strftime("%B %d, %Y")


def build_environment(template_dir: Path | str | None = None) -> Environment:
    env = Environment(
        loader=FileSystemLoader(str(template_dir or TEMPLATES_DIR)),
        autoescape=select_autoescape(["html", "xml"]),
    )
    env.filters["money"] = format_money
    env.filters["quantity"] = format_quantity
    env.filters["date"] = format_date
    return env


def template_context(document: DocumentInfo, profile: BusinessProfile) -> dict[str, Any]:
    return {
        "document": document,
        "heading": DOCUMENT_HEADINGS.get(document.document_type, document.type_label),
        "company": profile,
        "customer": document.customer,
        "items": document.items,
    }


class HtmlPdfRenderer:
    """
    Jinja2 + WeasyPrint implementation of the DocumentRenderer port.

    ``available`` is False when rendering is disabled in settings or
    WeasyPrint is not installed.
    """

    def __init__(
        self,
        template_dir: Path | str | None = None,
        *,
        enabled: bool = True,
    ):
        self._env = build_environment(template_dir)
        self._enabled = enabled

    @property
    def available(self) -> bool:
        return self._enabled and importlib.util.find_spec("weasyprint") is not None

    def render_html(self, document: DocumentInfo, profile: BusinessProfile) -> str:
        template = self._env.get_template(DOCUMENT_TEMPLATE)
        return template.render(**template_context(document, profile))

    def render(self, document: DocumentInfo, profile: BusinessProfile) -> bytes:
        if not self._enabled:
            raise ExternalServiceUnavailableError("rendering", "rendering is disabled")
        html = self.render_html(document, profile)
        if not html.strip():
            raise RenderFailureError(str(document.id), "template produced no HTML")

        try:
            from weasyprint import HTML
        except ImportError as exc:
            raise ExternalServiceUnavailableError("rendering", f"WeasyPrint not installed: {exc}") from exc

        pdf = HTML(string=html, base_url=str(TEMPLATES_DIR)).write_pdf()
        logger.debug(
            "document_pdf_rendered",
            extra={"document_id": str(document.id), "size_bytes": len(pdf or b"")},
        )
        return pdf
