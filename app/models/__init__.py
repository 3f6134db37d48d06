"""
ABAP Documentation Workbench
Model registry — the shared Flask-SQLAlchemy handle.

Usage:
    from app.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
