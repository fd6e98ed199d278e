"""WSGI entry point: `flask --app wsgi run` or any WSGI server pointed at `wsgi:app`."""
import os

from app import create_app

# Config class path can be swapped per deployment (e.g. config.TestConfig for smoke runs)
app = create_app(os.getenv('APP_CONFIG', 'config.Config'))

if __name__ == "__main__":
    app.run(port=int(os.getenv('PORT', '5000')))
