"""
WSGI entry point for the ABAP Documentation Workbench.

Usage:
    gunicorn wsgi:app                 # production (APP_ENV=production)
    flask --app wsgi run              # local development server
    flask --app wsgi db migrate -m "description"
    flask --app wsgi db upgrade
"""

from app import create_app

app = create_app()
