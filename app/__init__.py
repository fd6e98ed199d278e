"""Flask application factory."""
import os

from flask import Flask, jsonify, request

from app.database import init_db


def create_app(config_object='config.Config', **pipeline_overrides):
    """
    Create and configure the Flask application.

    `pipeline_overrides` are passed to QuoteOrchestrator.from_config (tests use
    them to inject fake payment, email and render components).
    """
    app = Flask(__name__)
    app.config.from_object(config_object)

    # Sentry error tracking in production
    if os.getenv('SENTRY_DSN') and (app.config.get('ENV') == 'production' or os.getenv('FLASK_ENV') == 'production'):
        import sentry_sdk
        from sentry_sdk.integrations.flask import FlaskIntegration

        sentry_sdk.init(
            dsn=os.getenv('SENTRY_DSN'),
            integrations=[FlaskIntegration()],
            traces_sample_rate=0.1,
            environment=os.getenv('FLASK_ENV', 'production'),
            release=os.getenv('GIT_COMMIT', 'unknown')
        )

    # Flask-Mail backs the SMTP link of the email provider chain
    from app.services.email_providers import init_mail, mail
    init_mail(app)

    from app.blueprints.metrics import setup_metrics_instrumentation
    setup_metrics_instrumentation(app)

    # Production: trust X-Forwarded-* from the reverse proxy
    if app.config.get('ENV') == 'production':
        from werkzeug.middleware.proxy_fix import ProxyFix
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_port=1, x_prefix=0)

    init_db(app)

    # Quote pipeline: provider chain and adapters are built once here
    from app.services.quote_delivery_service import QuoteOrchestrator
    app.extensions['quote_pipeline'] = QuoteOrchestrator.from_config(app.config, mail=mail, **pipeline_overrides)

    from app.exceptions import QuotePipelineError

    @app.errorhandler(QuotePipelineError)
    def handle_pipeline_error(error):
        """Translate service exceptions to JSON."""
        if error.status_code >= 500:
            app.logger.error(f"{type(error).__name__} [{error.status_code}] on {request.path}: {error.message}")
        else:
            app.logger.warning(f"{type(error).__name__} [{error.status_code}] on {request.path}: {error.message}")
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(404)
    def not_found_error(error):
        return jsonify({'status': 'error', 'message': 'Not Found'}), 404

    @app.errorhandler(500)
    def internal_error(error):
        app.logger.error(f"Unhandled Exception: {error}")
        return jsonify({'status': 'error', 'message': 'Internal Server Error'}), 500

    # Register blueprints
    from app.blueprints.quotes import quotes_bp
    from app.blueprints.webhooks import webhooks_bp
    from app.blueprints.metrics import metrics_bp

    app.register_blueprint(quotes_bp)
    app.register_blueprint(webhooks_bp)
    app.register_blueprint(metrics_bp)

    from app.cli_commands import init_cli_commands
    init_cli_commands(app)

    app.logger.info(f"PAYMENT_PROVIDER={app.config.get('PAYMENT_PROVIDER') or 'disabled'}")
    app.logger.info(f"MAIL_SERVER={app.config.get('MAIL_SERVER')}")

    return app
