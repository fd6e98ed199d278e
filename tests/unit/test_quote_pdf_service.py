"""
Unit tests for quote document rendering.
"""

import pytest
from dataclasses import replace
from datetime import date, datetime
from decimal import Decimal
from io import BytesIO

from PIL import Image
from pypdf import PdfReader

from app.exceptions import DocumentUnavailableError
from app.services.pricing_service import LineItemInput, calculate_quote_totals
from app.services.quote_pdf_service import (
    QuoteDocumentRenderer, QuoteSnapshot, SnapshotLine, document_filename, render_quote_document
)
from tests.fakes import FailingRenderer


def make_snapshot(line_count=1, **kwargs):
    lines = [
        SnapshotLine(f'Menu item {i}', 2, Decimal('125.00'), Decimal('250.00'))
        for i in range(1, line_count + 1)
    ]
    totals = calculate_quote_totals(
        [LineItemInput(l.description, l.quantity, l.unit_price) for l in lines],
        kwargs.get('tax_rate_pct', Decimal('8.5')),
        kwargs.get('gratuity_rate_pct', Decimal('18')),
    )
    defaults = dict(
        quote_id=1,
        quote_number='Q-202501-0001',
        status='DRAFT',
        created_at=datetime(2025, 1, 15, 10, 0),
        valid_until=date(2025, 2, 14),
        customer_name='Jane Doe',
        customer_email='jane@example.com',
        totals=totals,
        items=tuple(lines),
        service_type='CATERING',
        event_date=date(2025, 3, 1),
        event_location='Riverside Park',
        guest_count=50,
        tax_rate_pct=Decimal('8.5'),
        gratuity_rate_pct=Decimal('18'),
    )
    defaults.update(kwargs)
    return QuoteSnapshot(**defaults)


def read_pdf(content):
    reader = PdfReader(BytesIO(content))
    return reader, '\n'.join(page.extract_text() or '' for page in reader.pages)


class TestRenderQuoteDocument:
    """Tests for the full document."""

    def test_valid_pdf_with_totals(self, business):
        document = render_quote_document(make_snapshot(), business)

        assert document.content.startswith(b'%PDF')
        assert document.filename == 'quote-Q-202501-0001.pdf'
        assert document.fallback is False
        reader, text = read_pdf(document.content)
        assert len(reader.pages) == 1
        assert 'Q-202501-0001' in text
        assert 'Jane Doe' in text
        assert '$316.25' in text  # 250 + 8.5% + 18%

    def test_many_items_paginate(self, business):
        document = render_quote_document(make_snapshot(line_count=80), business)
        reader, text = read_pdf(document.content)
        assert len(reader.pages) > 1
        assert 'Menu item 80' in text

    def test_markup_in_text_is_escaped(self, business):
        snapshot = make_snapshot(customer_name='Jane <b>& Co', notes='Bring <chairs>')
        document = render_quote_document(snapshot, business)
        _, text = read_pdf(document.content)
        assert '<chairs>' in text
        assert '&amp;' not in text

    def test_unreadable_logo_is_skipped(self, business, tmp_path):
        bogus = tmp_path / 'logo.png'
        bogus.write_bytes(b'not an image')
        profile = replace(business, logo_path=str(bogus))

        document = render_quote_document(make_snapshot(), profile)
        assert document.content.startswith(b'%PDF')

    def test_logo_is_embedded(self, business, tmp_path):
        logo = tmp_path / 'logo.png'
        Image.new('RGB', (200, 100), color='orange').save(logo, format='PNG')
        profile = replace(business, logo_path=str(logo))

        document = render_quote_document(make_snapshot(), profile)
        assert len(PdfReader(BytesIO(document.content)).pages[0].images) == 1

    def test_missing_logo_is_skipped(self, business):
        profile = replace(business, logo_path='/nonexistent/logo.png')
        assert render_quote_document(make_snapshot(), profile).content.startswith(b'%PDF')


class TestQuoteDocumentRenderer:
    """Tests for the full-then-fallback policy."""

    def test_full_render(self, business):
        assert QuoteDocumentRenderer(business).render_with_fallback(make_snapshot()).fallback is False

    def test_fallback_when_full_fails(self, business):
        document = FailingRenderer(business).render_with_fallback(make_snapshot())

        assert document.fallback is True
        assert document.filename == document_filename('Q-202501-0001', fallback=True)
        reader, text = read_pdf(document.content)
        assert len(reader.pages) == 1
        assert 'This is a simplified quote document.' in text
        assert '$316.25' in text

    def test_both_fail(self, business):
        with pytest.raises(DocumentUnavailableError):
            FailingRenderer(business, fallback_fails=True).render_with_fallback(make_snapshot())
