"""
PDF rendering for lease agreements.

Uses WeasyPrint to convert the rendered agreement HTML to PDF. Free-text legal
terms are authored in Markdown.
"""

import io
import logging

import markdown
from django.utils import timezone
from django.utils.html import escape

logger = logging.getLogger(__name__)

TEMPLATE_TITLES = {
    "residential-single-family": "Residential Lease Agreement",
    "residential-apartment": "Apartment Lease Agreement",
    "commercial": "Commercial Lease Agreement",
}


class LeasePDFGenerator:
    """Renders a lease agreement to PDF bytes."""

    def __init__(self, lease, template_type=None, sender_info=None):
        self.lease = lease
        self.template_type = template_type or lease.template_type
        self.sender_info = sender_info or {}

    def generate(self) -> bytes:
        html = self._build_html_document()
        return self._html_to_pdf(html)

    @property
    def title(self):
        return TEMPLATE_TITLES.get(self.template_type, "Lease Agreement")

    def _terms_html(self) -> str:
        terms = self.lease.legal_terms or {}
        text = terms.get("text") or terms.get("additional_terms") or ""
        if not text:
            return ""
        return markdown.markdown(text, extensions=["tables", "nl2br"])

    def _rows(self):
        lease = self.lease
        tenant = lease.tenant
        tenant_name = tenant.get_full_name() if tenant else lease.tenant_invitation.full_name
        rows = [
            ("Lease number", lease.lease_number),
            ("Landlord", self.sender_info.get("name") or lease.client.legal_entity_name or lease.client.name),
            ("Tenant", tenant_name),
            ("Premises", lease.rental_property.full_address),
            ("Term", f"{lease.start_date:%B %d, %Y} to {lease.end_date:%B %d, %Y}"),
            ("Monthly rent", f"{lease.monthly_rent} {lease.currency}"),
            ("Security deposit", f"{lease.security_deposit} {lease.currency}"),
            ("Rent due", f"Day {lease.rent_due_day} of each month"),
        ]
        if lease.unit_id:
            rows.insert(4, ("Unit", lease.unit.unit_number))
        for co_tenant in lease.co_tenants or []:
            rows.append(("Co-tenant", co_tenant.get("name") or co_tenant.get("email", "")))
        if lease.utilities_included:
            rows.append(("Utilities included", ", ".join(lease.utilities_included)))
        return rows

    def _build_html_document(self) -> str:
        rows_html = "".join(
            f"<tr><th>{escape(label)}</th><td>{escape(str(value))}</td></tr>"
            for label, value in self._rows()
        )
        return f"""
        <!DOCTYPE html>
        <html>
        <head>
            <meta charset="UTF-8">
            <title>{escape(self.title)}</title>
            <style>
                @page {{ size: letter; margin: 1in; }}
                body {{ font-family: 'Times New Roman', Times, serif; font-size: 12pt; line-height: 1.5; }}
                h1 {{ font-size: 18pt; text-align: center; }}
                table {{ width: 100%; border-collapse: collapse; }}
                th, td {{ border: 1px solid #ccc; padding: 5px 10px; text-align: left; }}
                .footer {{ margin-top: 2em; font-size: 9pt; color: #666; text-align: center; }}
            </style>
        </head>
        <body>
            <h1>{escape(self.title)}</h1>
            <table>{rows_html}</table>
            <div class="terms">{self._terms_html()}</div>
            <div class="footer">
                <p>Generated: {timezone.now():%Y-%m-%d %H:%M:%S UTC}</p>
            </div>
        </body>
        </html>
        """

    def _html_to_pdf(self, html: str) -> bytes:
        from weasyprint import HTML

        pdf_buffer = io.BytesIO()
        HTML(string=html).write_pdf(pdf_buffer)
        pdf_buffer.seek(0)
        return pdf_buffer.read()


def render_lease_pdf(lease, template_type=None, sender_info=None) -> bytes:
    """Default ``LEASE_DOCUMENT_RENDERER``."""
    return LeasePDFGenerator(lease, template_type, sender_info).generate()
