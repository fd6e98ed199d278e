"""
Flask CLI commands for quote maintenance.

Commands:
- flask quotes init-db: Create the tables
- flask quotes expire-overdue: Move SENT quotes past valid_until to EXPIRED
- flask quotes send <id>: Send a quote from the shell
"""

from datetime import date

import click
from flask import current_app
from flask.cli import AppGroup

from app.database import create_all, get_session
from app.exceptions import QuotePipelineError
from app.services.quote_service import expire_overdue_quotes

quotes_cli = AppGroup('quotes', help='Quote maintenance commands.')


@quotes_cli.command('init-db')
def init_db_command():
    """Create every table that does not exist yet."""
    create_all()
    click.echo(click.style('✅ Tables created.', fg='green'))


@quotes_cli.command('expire-overdue')
@click.option('--today', type=click.DateTime(formats=['%Y-%m-%d']), default=None,
              help='Reference date (YYYY-MM-DD), defaults to today.')
def expire_overdue_command(today):
    """Expire SENT quotes whose validity date has passed."""
    reference = today.date() if today else date.today()
    count = expire_overdue_quotes(get_session(), today=reference)
    click.echo(f'Expired {count} quote(s) as of {reference.isoformat()}.')


@quotes_cli.command('send')
@click.argument('quote_id', type=int)
@click.option('--mode', type=click.Choice(['full', 'deposit']), default='full', show_default=True)
def send_quote_command(quote_id, mode):
    """Email a quote with its payment link and PDF."""
    pipeline = current_app.extensions['quote_pipeline']
    try:
        result = pipeline.send_quote(get_session(), quote_id, mode)
    except QuotePipelineError as e:
        click.echo(click.style(f'❌ {e.message}', fg='red'))
        raise SystemExit(1)

    color = 'green' if result.outcome == 'sent' else 'yellow'
    click.echo(click.style(f'✅ Quote {quote_id} {result.outcome} via {result.provider_used}', fg=color, bold=True))
    click.echo(f'   Checkout: {result.checkout_url}')
    if result.degradations:
        click.echo(f'   Missing: {", ".join(result.degradations)}')


def init_cli_commands(app):
    """Register CLI commands with Flask app."""
    app.cli.add_command(quotes_cli)
