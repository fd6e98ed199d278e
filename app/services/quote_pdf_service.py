"""
Quote PDF rendering (reportlab).

Works on an immutable QuoteSnapshot so it can run on a worker thread without
touching the database session. The full layout is attempted once; on any
error the single-page fallback is drawn with the low-level canvas API so a
layout problem in the full document cannot repeat itself there.
"""
import logging
import os
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from io import BytesIO
from typing import Optional, Tuple
from xml.sax.saxutils import escape

from PIL import Image as PILImage
from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER, TA_RIGHT
from reportlab.lib.pagesizes import LETTER
from reportlab.lib.styles import getSampleStyleSheet, ParagraphStyle
from reportlab.lib.units import inch
from reportlab.pdfgen import canvas
from reportlab.platypus import SimpleDocTemplate, Table, TableStyle, Paragraph, Spacer, Image, KeepTogether

from app.exceptions import DocumentUnavailableError, RenderFailureError
from app.models.quote import DepositType
from app.services.pricing_service import QuoteTotals
from app.utils.formatters import money, percent, long_date, service_label

logger = logging.getLogger(__name__)

ACCENT = colors.HexColor('#FF6B35')
TEXT = colors.HexColor('#333333')
MUTED = colors.HexColor('#666666')
RULE = colors.HexColor('#DDDDDD')
ZEBRA = colors.HexColor('#F7F7F7')

STATUS_COLORS = {
    'DRAFT': '#6B7280',
    'SENT': '#3B82F6',
    'ACCEPTED': '#10B981',
    'REJECTED': '#EF4444',
    'EXPIRED': '#F59E0B',
    'PAID': '#10B981',
}


@dataclass(frozen=True)
class BusinessProfile:
    name: str
    tagline: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None
    logo_path: Optional[str] = None
    contact_url: Optional[str] = None
    default_terms: Optional[str] = None

    @classmethod
    def from_config(cls, config) -> 'BusinessProfile':
        base_url = (config.get('APP_BASE_URL') or '').rstrip('/')
        return cls(
            name=config.get('BUSINESS_NAME'),
            tagline=config.get('BUSINESS_TAGLINE'),
            phone=config.get('BUSINESS_PHONE'),
            email=config.get('BUSINESS_EMAIL'),
            address=config.get('BUSINESS_ADDRESS'),
            logo_path=config.get('COMPANY_LOGO_PATH'),
            contact_url=f"{base_url}/contact" if base_url else None,
            default_terms=config.get('QUOTE_DEFAULT_TERMS'),
        )


@dataclass(frozen=True)
class SnapshotLine:
    description: str
    quantity: int
    unit_price: Decimal
    total: Decimal
    notes: Optional[str] = None


@dataclass(frozen=True)
class QuoteSnapshot:
    """Everything the document and the email need, detached from the ORM."""
    quote_id: int
    quote_number: str
    status: str
    created_at: Optional[datetime]
    valid_until: Optional[date]
    customer_name: str
    customer_email: str
    totals: QuoteTotals
    items: Tuple[SnapshotLine, ...] = ()
    customer_phone: Optional[str] = None
    company_name: Optional[str] = None
    service_type: Optional[str] = None
    event_date: Optional[date] = None
    event_time: Optional[str] = None
    event_location: Optional[str] = None
    guest_count: Optional[int] = None
    tax_rate_pct: Decimal = Decimal('0')
    gratuity_rate_pct: Decimal = Decimal('0')
    deposit_type: str = DepositType.NONE.value
    deposit_value: Optional[Decimal] = None
    terms: Optional[str] = None
    notes: Optional[str] = None

    @classmethod
    def from_quote(cls, quote, totals: QuoteTotals) -> 'QuoteSnapshot':
        customer = quote.customer
        return cls(
            quote_id=quote.id,
            quote_number=quote.quote_number,
            status=quote.status,
            created_at=quote.created_at,
            valid_until=quote.valid_until,
            customer_name=(customer.name or '').strip() if customer else '',
            customer_email=(customer.email or '').strip() if customer else '',
            customer_phone=customer.phone if customer else None,
            company_name=customer.company_name if customer else None,
            totals=totals,
            items=tuple(
                SnapshotLine(
                    description=line.description,
                    quantity=line.quantity,
                    unit_price=Decimal(line.unit_price),
                    total=Decimal(line.total),
                    notes=line.notes,
                )
                for line in quote.items
            ),
            service_type=quote.service_type,
            event_date=quote.event_date,
            event_time=quote.event_time,
            event_location=quote.event_location,
            guest_count=quote.guest_count,
            tax_rate_pct=Decimal(quote.tax_rate_pct or 0),
            gratuity_rate_pct=Decimal(quote.gratuity_rate_pct or 0),
            deposit_type=quote.deposit_type or DepositType.NONE.value,
            deposit_value=Decimal(quote.deposit_value) if quote.deposit_value is not None else None,
            terms=quote.terms,
            notes=quote.notes,
        )


@dataclass(frozen=True)
class RenderedDocument:
    content: bytes
    filename: str
    fallback: bool = False
    content_type: str = 'application/pdf'


def document_filename(quote_number: str, fallback: bool = False) -> str:
    suffix = '-fallback' if fallback else ''
    return f"quote-{quote_number}{suffix}.pdf"


def _styles():
    base = getSampleStyleSheet()
    return {
        'business': ParagraphStyle('Business', parent=base['Heading1'], fontName='Helvetica-Bold',
                                   fontSize=20, textColor=ACCENT, spaceAfter=2),
        'tagline': ParagraphStyle('Tagline', parent=base['Normal'], fontSize=9, textColor=MUTED),
        'contact': ParagraphStyle('Contact', parent=base['Normal'], fontSize=9, textColor=MUTED,
                                  alignment=TA_RIGHT, leading=12),
        'title': ParagraphStyle('Title', parent=base['Heading1'], fontName='Helvetica-Bold', fontSize=24,
                                textColor=ACCENT, alignment=TA_CENTER, spaceAfter=4),
        'subtitle': ParagraphStyle('Subtitle', parent=base['Normal'], fontSize=13, textColor=TEXT,
                                   alignment=TA_CENTER, spaceAfter=4),
        'meta': ParagraphStyle('Meta', parent=base['Normal'], fontSize=9, textColor=MUTED, alignment=TA_CENTER),
        'section': ParagraphStyle('Section', parent=base['Heading2'], fontName='Helvetica-Bold', fontSize=12,
                                  textColor=ACCENT, spaceBefore=10, spaceAfter=6),
        'body': ParagraphStyle('Body', parent=base['Normal'], fontSize=10, textColor=TEXT, leading=14),
        'cell': ParagraphStyle('Cell', parent=base['Normal'], fontSize=9, textColor=TEXT, leading=11),
    }


def _text(value) -> str:
    """Escape free text for Paragraph markup, keeping line breaks."""
    return escape(str(value)).replace('\n', '<br/>')


def _logo(path: Optional[str]):
    """Logo flowable, or None when the file is missing or unreadable."""
    if not path:
        return None
    if not (os.path.isfile(path) and os.access(path, os.R_OK)):
        logger.warning(f"[PDF] Logo not readable at {path}; using text-only header")
        return None
    try:
        with PILImage.open(path) as img:
            width, height = img.size
            img.verify()
        target_h = 0.8 * inch
        return Image(path, width=target_h * width / height, height=target_h)
    except Exception as e:
        logger.warning(f"[PDF] Logo could not be loaded ({e}); using text-only header")
        return None


def _header(snapshot: QuoteSnapshot, business: BusinessProfile, styles) -> list:
    identity = [Paragraph(_text(business.name), styles['business'])]
    if business.tagline:
        identity.append(Paragraph(_text(business.tagline), styles['tagline']))

    contact_lines = [_text(v) for v in (business.address, business.phone, business.email) if v]
    contact = Paragraph('<br/>'.join(contact_lines), styles['contact']) if contact_lines else ''

    logo = _logo(business.logo_path)
    if logo is not None:
        row = [[logo, identity, contact]]
        widths = [1.4 * inch, 2.9 * inch, 2.7 * inch]
    else:
        row = [[identity, contact]]
        widths = [4.3 * inch, 2.7 * inch]

    table = Table(row, colWidths=widths)
    table.setStyle(TableStyle([
        ('VALIGN', (0, 0), (-1, -1), 'MIDDLE'),
        ('LINEBELOW', (0, 0), (-1, 0), 2, ACCENT),
        ('BOTTOMPADDING', (0, 0), (-1, 0), 10),
    ]))
    return [table, Spacer(1, 0.25 * inch)]


def _title_block(snapshot: QuoteSnapshot, styles) -> list:
    created = long_date(snapshot.created_at) if snapshot.created_at else long_date(date.today())
    badge_color = colors.HexColor(STATUS_COLORS.get(snapshot.status, '#6B7280'))
    badge = Table([[snapshot.status]], colWidths=[1.1 * inch])
    badge.setStyle(TableStyle([
        ('BACKGROUND', (0, 0), (-1, -1), badge_color),
        ('TEXTCOLOR', (0, 0), (-1, -1), colors.white),
        ('FONTNAME', (0, 0), (-1, -1), 'Helvetica-Bold'),
        ('FONTSIZE', (0, 0), (-1, -1), 9),
        ('ALIGN', (0, 0), (-1, -1), 'CENTER'),
    ]))
    badge.hAlign = 'CENTER'
    return [
        Paragraph('QUOTE', styles['title']),
        Paragraph(f"Quote #{_text(snapshot.quote_number)}", styles['subtitle']),
        Paragraph(f"Date: {created} &nbsp;&nbsp; Valid Until: {long_date(snapshot.valid_until)}", styles['meta']),
        Spacer(1, 0.1 * inch),
        badge,
        Spacer(1, 0.2 * inch),
    ]


def _customer_block(snapshot: QuoteSnapshot, styles) -> list:
    lines = [f"<b>{_text(snapshot.customer_name)}</b>"]
    if snapshot.company_name:
        lines.append(_text(snapshot.company_name))
    lines.append(_text(snapshot.customer_email))
    if snapshot.customer_phone:
        lines.append(_text(snapshot.customer_phone))
    return [Paragraph('Bill To', styles['section']), Paragraph('<br/>'.join(lines), styles['body'])]


def _event_block(snapshot: QuoteSnapshot, styles) -> list:
    rows = []
    if snapshot.service_type:
        rows.append(('Service', service_label(snapshot.service_type)))
    if snapshot.event_date:
        rows.append(('Event Date', long_date(snapshot.event_date)))
    if snapshot.event_time:
        rows.append(('Event Time', snapshot.event_time))
    if snapshot.event_location:
        rows.append(('Location', snapshot.event_location))
    if snapshot.guest_count:
        rows.append(('Guests', str(snapshot.guest_count)))
    if not rows:
        return []
    data = [[Paragraph(f"<b>{label}:</b>", styles['body']), Paragraph(_text(value), styles['body'])]
            for label, value in rows]
    table = Table(data, colWidths=[1.5 * inch, 5.5 * inch])
    table.setStyle(TableStyle([('VALIGN', (0, 0), (-1, -1), 'TOP')]))
    return [Paragraph('Event Details', styles['section']), table]


def _items_table(snapshot: QuoteSnapshot, styles) -> list:
    data = [['Description', 'Qty', 'Unit Price', 'Total']]
    for line in snapshot.items:
        description = _text(line.description)
        if line.notes:
            description += f'<br/><font size="8" color="#666666">{_text(line.notes)}</font>'
        data.append([
            Paragraph(description, styles['cell']),
            str(line.quantity),
            money(line.unit_price),
            money(line.total),
        ])
    if len(data) == 1:
        data.append([Paragraph('<i>No line items</i>', styles['cell']), '', '', ''])

    # repeatRows keeps the header on every page the table spills onto
    table = Table(data, colWidths=[3.8 * inch, 0.7 * inch, 1.2 * inch, 1.3 * inch], repeatRows=1)
    table.setStyle(TableStyle([
        ('BACKGROUND', (0, 0), (-1, 0), ACCENT),
        ('TEXTCOLOR', (0, 0), (-1, 0), colors.white),
        ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
        ('FONTSIZE', (0, 0), (-1, -1), 9),
        ('BOTTOMPADDING', (0, 0), (-1, 0), 8),
        ('ALIGN', (1, 0), (1, -1), 'CENTER'),
        ('ALIGN', (2, 0), (-1, -1), 'RIGHT'),
        ('VALIGN', (0, 1), (-1, -1), 'TOP'),
        ('LINEBELOW', (0, 1), (-1, -1), 0.5, RULE),
        ('ROWBACKGROUNDS', (0, 1), (-1, -1), [colors.white, ZEBRA]),
    ]))
    return [Paragraph('Services', styles['section']), table, Spacer(1, 0.2 * inch)]


def _summary_block(snapshot: QuoteSnapshot) -> list:
    totals = snapshot.totals
    rows = [('Subtotal', money(totals.subtotal))]
    if snapshot.tax_rate_pct > 0:
        rows.append((f"Tax ({percent(snapshot.tax_rate_pct)})", money(totals.tax)))
    if snapshot.gratuity_rate_pct > 0:
        rows.append((f"Gratuity ({percent(snapshot.gratuity_rate_pct)})", money(totals.gratuity)))
    rows.append(('TOTAL', money(totals.total)))
    total_row = len(rows) - 1

    if totals.deposit_amount > 0:
        label = 'Deposit Required'
        if snapshot.deposit_type == DepositType.PERCENTAGE.value and snapshot.deposit_value is not None:
            label = f"Deposit Required ({percent(snapshot.deposit_value)})"
        rows.append((label, money(totals.deposit_amount)))
        rows.append(('Balance Due', money(totals.balance_due)))

    table = Table(rows, colWidths=[2.2 * inch, 1.3 * inch], hAlign='RIGHT')
    style = [
        ('ALIGN', (0, 0), (-1, -1), 'RIGHT'),
        ('FONTSIZE', (0, 0), (-1, -1), 10),
        ('TEXTCOLOR', (0, 0), (-1, -1), TEXT),
        ('FONTNAME', (0, total_row), (-1, total_row), 'Helvetica-Bold'),
        ('FONTSIZE', (0, total_row), (-1, total_row), 12),
        ('TEXTCOLOR', (0, total_row), (-1, total_row), ACCENT),
        ('LINEABOVE', (0, total_row), (-1, total_row), 1, ACCENT),
    ]
    if totals.deposit_amount > 0:
        style.append(('BACKGROUND', (0, total_row + 1), (-1, -1), ZEBRA))
    table.setStyle(TableStyle(style))
    return [KeepTogether([table]), Spacer(1, 0.2 * inch)]


def _terms_block(snapshot: QuoteSnapshot, business: BusinessProfile, styles) -> list:
    elements = []
    terms = snapshot.terms or business.default_terms
    if terms:
        elements += [Paragraph('Terms &amp; Conditions', styles['section']), Paragraph(_text(terms), styles['body'])]
    if snapshot.notes:
        elements += [Paragraph('Notes', styles['section']), Paragraph(_text(snapshot.notes), styles['body'])]
    return elements


def _footer(business: BusinessProfile):
    parts = [business.name] + [p for p in (business.phone, business.email) if p]
    footer_text = ' | '.join(parts)

    def draw(canv, doc):
        canv.saveState()
        canv.setStrokeColor(RULE)
        canv.line(doc.leftMargin, 0.6 * inch, doc.pagesize[0] - doc.rightMargin, 0.6 * inch)
        canv.setFont('Helvetica', 8)
        canv.setFillColor(MUTED)
        canv.drawString(doc.leftMargin, 0.45 * inch, footer_text)
        canv.drawRightString(doc.pagesize[0] - doc.rightMargin, 0.45 * inch, f"Page {doc.page}")
        canv.restoreState()
    return draw


def render_quote_document(snapshot: QuoteSnapshot, business: BusinessProfile) -> RenderedDocument:
    """
    Render the full quote document.

    Raises:
        RenderFailureError: any error while laying out or building the PDF.
    """
    try:
        buffer = BytesIO()
        doc = SimpleDocTemplate(
            buffer,
            pagesize=LETTER,
            rightMargin=0.75 * inch,
            leftMargin=0.75 * inch,
            topMargin=0.75 * inch,
            bottomMargin=0.9 * inch,
            title=f"Quote {snapshot.quote_number}",
            author=business.name,
        )
        styles = _styles()
        elements = []
        elements += _header(snapshot, business, styles)
        elements += _title_block(snapshot, styles)
        elements += _customer_block(snapshot, styles)
        elements += _event_block(snapshot, styles)
        elements += _items_table(snapshot, styles)
        elements += _summary_block(snapshot)
        elements += _terms_block(snapshot, business, styles)

        footer = _footer(business)
        doc.build(elements, onFirstPage=footer, onLaterPages=footer)
    except Exception as e:
        raise RenderFailureError(f"Could not render quote {snapshot.quote_number}: {e}") from e

    content = buffer.getvalue()
    logger.info(f"[PDF] Rendered {snapshot.quote_number} ({len(content) // 1024} KB, {len(snapshot.items)} items)")
    return RenderedDocument(content=content, filename=document_filename(snapshot.quote_number))


def generate_fallback_document(snapshot: QuoteSnapshot, business: BusinessProfile) -> RenderedDocument:
    """
    Minimal single page: business name, quote number, customer and total.

    Raises:
        DocumentUnavailableError: even the minimal page could not be drawn.
    """
    try:
        buffer = BytesIO()
        pdf = canvas.Canvas(buffer, pagesize=LETTER)
        width, height = LETTER
        y = height - 72

        pdf.setFont('Helvetica-Bold', 20)
        pdf.setFillColor(ACCENT)
        pdf.drawString(72, y, business.name or '')
        y -= 40

        pdf.setFillColor(TEXT)
        pdf.setFont('Helvetica-Bold', 14)
        pdf.drawString(72, y, f"Quote #{snapshot.quote_number}")
        y -= 30

        pdf.setFont('Helvetica', 11)
        pdf.drawString(72, y, f"Customer: {snapshot.customer_name}")
        y -= 18
        pdf.drawString(72, y, f"Email: {snapshot.customer_email}")
        y -= 30

        pdf.setFont('Helvetica-Bold', 14)
        pdf.drawString(72, y, f"Total: {money(snapshot.totals.total)}")
        y -= 40

        pdf.setFont('Helvetica-Oblique', 9)
        pdf.setFillColor(MUTED)
        pdf.drawString(72, y, 'This is a simplified quote document.')
        pdf.showPage()
        pdf.save()
    except Exception as e:
        raise DocumentUnavailableError(f"Fallback document failed for quote {snapshot.quote_number}: {e}") from e

    logger.info(f"[PDF] Rendered fallback document for {snapshot.quote_number}")
    return RenderedDocument(content=buffer.getvalue(), filename=document_filename(snapshot.quote_number, True),
                            fallback=True)


class QuoteDocumentRenderer:
    """Binds the business profile and applies the full-then-fallback policy."""

    def __init__(self, business: BusinessProfile):
        self.business = business

    def render(self, snapshot: QuoteSnapshot) -> RenderedDocument:
        return render_quote_document(snapshot, self.business)

    def render_fallback(self, snapshot: QuoteSnapshot) -> RenderedDocument:
        return generate_fallback_document(snapshot, self.business)

    def render_with_fallback(self, snapshot: QuoteSnapshot) -> RenderedDocument:
        """
        Full render, else fallback. `RenderedDocument.fallback` tells which.

        Raises:
            DocumentUnavailableError: both paths failed.
        """
        try:
            return self.render(snapshot)
        except Exception as e:
            logger.warning(f"[PDF] Full render failed for quote {snapshot.quote_id}: {e}; trying fallback")
        try:
            return self.render_fallback(snapshot)
        except DocumentUnavailableError:
            raise
        except Exception as e:
            raise DocumentUnavailableError(f"Fallback document failed for quote {snapshot.quote_id}: {e}") from e
