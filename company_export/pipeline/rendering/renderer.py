"""Invoice document renderer producing paginated PDF bytes.

``render_document`` is a pure function of its inputs: it resolves the
template file for the given key, substitutes the bundle's values into each
template line and lays the result out on a ReportLab canvas held in memory.
Nothing is written to disk here; persisting the returned bytes is the
artifact store's job.

Template format
---------------
Templates are line oriented:

- ``# text`` / ``## text`` / ``### text`` are headings,
- ``- text`` is a bullet,
- ``[[logo]]``, ``[[items]]`` and ``[[taxes]]`` on their own line place the
  branding image, the line item table and the tax table,
- blank lines add vertical space, anything else is wrapped body text.

Any failure is raised as ``RenderFailure`` tagged with the invoice id.
"""

from __future__ import annotations

import io
import logging
import re
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.utils import ImageReader
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfgen import canvas
from reportlab.platypus import Table, TableStyle

from company_export.exceptions import RenderFailure
from company_export.pipeline.sources.models import (
    CustomField,
    Invoice,
    InvoiceItem,
    Tax,
)

from .templating import load_template, render_template, template_path_for

logger = logging.getLogger(__name__)

DIRECTIVE_PATTERN = re.compile(r"^\[\[([a-z]+)\]\]$")
LOGO_MAX_WIDTH = 120
LOGO_MAX_HEIGHT = 60


@dataclass(frozen=True)
class DocumentBundle:
    """Everything one invoice document is rendered from."""

    invoice: Invoice
    organization_name: str
    logo: str | None
    company_address: str
    billing_address: str
    shipping_address: str
    notes: str
    items: tuple[InvoiceItem, ...]
    taxes: tuple[Tax, ...]
    custom_fields: tuple[CustomField, ...]


def format_money(amount: Decimal, symbol: str = "") -> str:
    """Format a currency amount with thousands separators and two decimals.

    Examples
    --------
    >>> format_money(Decimal("1234.5"), "$")
    '$1,234.50'
    """
    return f"{symbol}{amount:,.2f}"


def build_document_context(bundle: DocumentBundle) -> dict[str, str]:
    """Flatten a bundle into the ``{Placeholder}`` values templates may use."""
    invoice = bundle.invoice
    symbol = invoice.currency_symbol
    customer = invoice.customer
    return {
        "CompanyName": bundle.organization_name,
        "InvoiceNumber": invoice.invoice_number,
        "InvoiceDate": invoice.invoice_date.isoformat() if invoice.invoice_date else "",
        "DueDate": invoice.due_date.isoformat() if invoice.due_date else "",
        "CustomerName": customer.name if customer else "",
        "CustomerEmail": (customer.email or "") if customer else "",
        "CompanyAddress": bundle.company_address,
        "BillingAddress": bundle.billing_address,
        "ShippingAddress": bundle.shipping_address,
        "Notes": bundle.notes,
        "SubTotal": format_money(invoice.sub_total, symbol),
        "TaxTotal": format_money(invoice.tax_total, symbol),
        "Total": format_money(invoice.total, symbol),
    }


def custom_field_value(field: CustomField, item: InvoiceItem) -> str:
    """Return the item's own value for ``field`` or the rendered value template."""
    if field.id in item.custom_values:
        return item.custom_values[field.id]
    if not field.value_template:
        return ""
    return render_template(
        field.value_template,
        {
            "Name": item.name,
            "Description": item.description or "",
            "Quantity": f"{item.quantity.normalize():f}",
            "Price": f"{item.price:.2f}",
        },
        missing="",
    )


class DocumentWriter:
    """Small helper to manage page breaks and basic text layout on a canvas."""

    def __init__(self, c: canvas.Canvas) -> None:
        self.c = c
        self.width, self.height = A4
        self.margin_left = 56
        self.margin_right = 56
        self.margin_top = 56
        self.margin_bottom = 56
        self.content_width = self.width - self.margin_left - self.margin_right
        self.y = self.height - self.margin_top

    def _draw_footer(self) -> None:
        self.c.setFont("Helvetica", 8)
        self.c.drawRightString(
            self.width - self.margin_right,
            self.margin_bottom / 2,
            f"Page {self.c.getPageNumber()}",
        )

    def new_page(self) -> None:
        self._draw_footer()
        self.c.showPage()
        self.y = self.height - self.margin_top

    def finish(self) -> None:
        self._draw_footer()
        self.c.showPage()
        self.c.save()

    def ensure_space(self, needed: float) -> None:
        if self.y - needed < self.margin_bottom:
            self.new_page()

    def at_page_top(self) -> bool:
        return self.y >= self.height - self.margin_top

    def add_spacer(self, amount: float = 6) -> None:
        self.y -= amount

    def add_heading(self, text: str, level: int = 1) -> None:
        size = {0: 18, 1: 14, 2: 12}.get(level, 10)
        self.ensure_space(size + 8)
        self.c.setFont("Helvetica-Bold", size)
        self.c.drawString(self.margin_left, self.y, text)
        self.y -= size + 6

    def _wrapped_lines(
        self, text: str, font: str, size: int, max_width: float
    ) -> list[str]:
        lines: list[str] = []
        for para in text.split("\n"):
            words = para.split()
            if not words:
                lines.append("")
                continue
            line = words[0]
            for w in words[1:]:
                candidate = line + " " + w
                if pdfmetrics.stringWidth(candidate, font, size) <= max_width:
                    line = candidate
                else:
                    lines.append(line)
                    line = w
            lines.append(line)
        return lines

    def add_text(
        self,
        text: str,
        size: int = 9,
        leading: int = 12,
        font: str = "Helvetica",
        indent: float = 0,
    ) -> None:
        max_width = self.content_width - indent
        for line in self._wrapped_lines(text, font, size, max_width):
            self.ensure_space(leading)
            if line.strip():
                self.c.setFont(font, size)
                self.c.drawString(self.margin_left + indent, self.y, line)
            self.y -= leading

    def add_image(self, path: Path) -> None:
        reader = ImageReader(str(path))
        img_width, img_height = reader.getSize()
        scale = min(LOGO_MAX_WIDTH / img_width, LOGO_MAX_HEIGHT / img_height, 1.0)
        width, height = img_width * scale, img_height * scale
        self.ensure_space(height + 6)
        self.c.drawImage(
            reader,
            self.margin_left,
            self.y - height,
            width=width,
            height=height,
            mask="auto",
        )
        self.y -= height + 6

    def add_table(self, data: list[list[str]], col_widths: list[float]) -> None:
        table = Table(data, colWidths=col_widths, repeatRows=1)
        table.setStyle(
            TableStyle(
                [
                    ("BACKGROUND", (0, 0), (-1, 0), colors.lightgrey),
                    ("GRID", (0, 0), (-1, -1), 0.25, colors.grey),
                    ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
                    ("FONTSIZE", (0, 0), (-1, -1), 8),
                    ("ALIGN", (1, 0), (-1, -1), "RIGHT"),
                    ("BOTTOMPADDING", (0, 0), (-1, -1), 3),
                ]
            )
        )
        pending = [table]
        while pending:
            part = pending.pop(0)
            available = self.y - self.margin_bottom
            _, height = part.wrapOn(self.c, self.content_width, available)
            if height <= available:
                part.drawOn(self.c, self.margin_left, self.y - height)
                self.y -= height + 10
                continue
            pieces = part.split(self.content_width, available)
            if len(pieces) >= 2:
                pending[:0] = pieces
            elif self.at_page_top():
                # A single row taller than the page; let it overflow.
                part.drawOn(self.c, self.margin_left, self.y - height)
                self.y -= height + 10
            else:
                self.new_page()
                pending.insert(0, part)


def _column_widths(total: float, count: int) -> list[float]:
    first = total * 0.4 if count > 1 else total
    rest = (total - first) / (count - 1) if count > 1 else 0
    return [first] + [rest] * (count - 1)


def _items_table(bundle: DocumentBundle) -> list[list[str]]:
    symbol = bundle.invoice.currency_symbol
    header = ["Item", "Qty", "Price", "Amount"]
    header.extend(field.label for field in bundle.custom_fields)
    rows = [header]
    for item in bundle.items:
        row = [
            item.name,
            f"{item.quantity.normalize():f}",
            format_money(item.price, symbol),
            format_money(item.total, symbol),
        ]
        row.extend(custom_field_value(field, item) for field in bundle.custom_fields)
        rows.append(row)
    return rows


def _taxes_table(bundle: DocumentBundle) -> list[list[str]]:
    symbol = bundle.invoice.currency_symbol
    rows = [["Tax", "Rate", "Amount"]]
    for tax in bundle.taxes:
        rows.append(
            [tax.name, f"{tax.percent.normalize():f}%", format_money(tax.amount, symbol)]
        )
    return rows


def _draw_directive(writer: DocumentWriter, name: str, bundle: DocumentBundle) -> None:
    if name == "logo":
        if not bundle.logo:
            return
        logo_path = Path(bundle.logo)
        if not logo_path.is_file():
            logger.warning(
                "Logo not found for invoice=%s path=%s", bundle.invoice.id, logo_path
            )
            return
        writer.add_image(logo_path)
    elif name == "items":
        data = _items_table(bundle)
        writer.add_table(data, _column_widths(writer.content_width, len(data[0])))
    elif name == "taxes":
        if not bundle.taxes:
            return
        data = _taxes_table(bundle)
        writer.add_table(data, _column_widths(writer.content_width, len(data[0])))
    else:
        raise ValueError(f"Unknown template directive: [[{name}]]")


def layout_document(
    writer: DocumentWriter, template_content: str, bundle: DocumentBundle
) -> None:
    """Draw every template line onto ``writer``."""
    context = build_document_context(bundle)
    for raw_line in template_content.splitlines():
        stripped = raw_line.strip()
        directive = DIRECTIVE_PATTERN.match(stripped)
        if directive:
            _draw_directive(writer, directive.group(1), bundle)
            continue
        if not stripped:
            writer.add_spacer()
            continue
        line = render_template(stripped, context)
        if stripped.startswith("#"):
            level = len(stripped) - len(stripped.lstrip("#")) - 1
            writer.add_heading(line.lstrip("#").strip(), level=level)
        elif stripped.startswith("- "):
            writer.add_text("- " + line[2:], indent=8)
        else:
            writer.add_text(line)


def render_document(
    template_key: str, bundle: DocumentBundle, template_dir: Path | None = None
) -> bytes:
    """Render one invoice document and return its PDF bytes.

    Parameters
    ----------
    template_key : str
        Resolved template selector (e.g. ``"invoice1"``).
    bundle : DocumentBundle
        Invoice record, address blocks, notes, items, taxes, branding and the
        run-wide custom field definitions.
    template_dir : Path | None, optional
        Override for the template directory.

    Returns
    -------
    bytes
        The complete PDF document.

    Raises
    ------
    company_export.exceptions.RenderFailure
        If the template cannot be loaded or the document cannot be laid out.
    """
    invoice_id = bundle.invoice.id
    try:
        template_content = load_template(template_path_for(template_key, template_dir))
        buffer = io.BytesIO()
        c = canvas.Canvas(buffer, pagesize=A4, invariant=1)
        c.setTitle(f"Invoice {bundle.invoice.invoice_number}")
        c.setAuthor(bundle.organization_name)
        writer = DocumentWriter(c)
        layout_document(writer, template_content, bundle)
        writer.finish()
        return buffer.getvalue()
    except RenderFailure:
        raise
    except Exception as error:
        raise RenderFailure(
            f"Rendering invoice {invoice_id} with template {template_key!r} failed: {error}",
            unit_id=invoice_id,
            context={"template": template_key},
        ) from error
