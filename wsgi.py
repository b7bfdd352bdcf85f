"""
WSGI / Flask-Migrate entry point.

Usage:
    gunicorn wsgi:app
    flask --app wsgi advance-phases
    flask --app wsgi db migrate -m "description"
"""

from app import create_app

app = create_app()
