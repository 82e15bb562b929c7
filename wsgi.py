"""
WSGI / Flask-Migrate entry point.

Usage:
    flask --app wsgi db init       # first time only (creates migrations/)
    flask --app wsgi db migrate -m "description"
    flask --app wsgi db upgrade
    flask --app wsgi create-company "Acme Metal Works"
    gunicorn wsgi:app
"""

from shopfloor import create_app

app = create_app()
