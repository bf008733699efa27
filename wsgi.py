"""
WSGI / Flask-Migrate entry point.

Usage:
    gunicorn wsgi:app
    flask --app wsgi db migrate -m "description"
    flask --app wsgi run-job cross_validation_expiry
"""

from storecheck import create_app

app = create_app()
