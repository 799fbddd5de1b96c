"""
WSGI / Flask-Migrate entry point.

Usage:
    gunicorn wsgi:app
    flask --app wsgi db migrate -m "description"
    flask --app wsgi issue-token <user_id>
"""

from portfolio_rbac import create_app

app = create_app()
