"""
Unit tests for formatting and retry helpers.
"""

import pytest
from datetime import date, datetime
from decimal import Decimal

from app.utils.formatters import long_date, money, percent, service_label, short_date
from app.utils.retry import backoff_delay, retry_on


class TestFormatters:
    """Tests for app.utils.formatters."""

    @pytest.mark.parametrize('value, expected', [
        (Decimal('632.5'), '$632.50'),
        (Decimal('1234567.891'), '$1,234,567.89'),
        (Decimal('-5'), '-$5.00'),
        (0, '$0.00'),
        ('126.50', '$126.50'),
        (None, '-'),
        ('abc', '-'),
    ])
    def test_money(self, value, expected):
        assert money(value) == expected

    @pytest.mark.parametrize('value, expected', [
        (Decimal('8.50'), '8.5%'),
        (Decimal('18'), '18%'),
        (Decimal('100'), '100%'),
        (None, '-'),
    ])
    def test_percent(self, value, expected):
        assert percent(value) == expected

    def test_dates(self):
        assert long_date(date(2025, 1, 5)) == 'January 5, 2025'
        assert long_date(datetime(2025, 3, 1, 18, 30)) == 'March 1, 2025'
        assert long_date(None) == '-'
        assert short_date(date(2025, 1, 5)) == '01/05/2025'

    def test_service_label(self):
        assert service_label('CATERING') == 'Catering Service'
        assert service_label('mobile_bar') == 'Mobile Bar Service'
        assert service_label('PRIVATE_CHEF') == 'Private Chef'
        assert service_label(None) == ''


class TestRetry:
    """Tests for app.utils.retry."""

    def test_returns_first_success(self):
        calls = []

        def fn():
            calls.append(1)
            if len(calls) < 3:
                raise ConnectionError('reset')
            return 'ok'

        sleeps = []
        assert retry_on(fn, attempts=3, sleep=sleeps.append) == 'ok'
        assert len(calls) == 3
        assert len(sleeps) == 2

    def test_reraises_last_error(self):
        def fn():
            raise TimeoutError('slow')

        with pytest.raises(TimeoutError):
            retry_on(fn, attempts=2, sleep=lambda s: None)

    def test_non_retryable_propagates_immediately(self):
        calls = []

        def fn():
            calls.append(1)
            raise ValueError('bad input')

        with pytest.raises(ValueError):
            retry_on(fn, attempts=5, is_retryable=lambda e: isinstance(e, ConnectionError), sleep=lambda s: None)
        assert len(calls) == 1

    def test_on_retry_callback(self):
        seen = []

        def fn():
            if not seen:
                raise ConnectionError('reset')
            return 'ok'

        retry_on(fn, attempts=2, on_retry=lambda n, e, d: seen.append((n, type(e))), sleep=lambda s: None)
        assert seen == [(1, ConnectionError)]

    def test_zero_attempts_still_calls_once(self):
        assert retry_on(lambda: 'ok', attempts=0) == 'ok'

    def test_backoff_is_capped(self):
        for attempt in range(10):
            delay = backoff_delay(0.2, 2.0, attempt, cap=2.0)
            assert 0.2 <= delay <= 2.5
