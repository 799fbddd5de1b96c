"""
Database handle shared by every model module.

Usage:
    from portfolio_rbac.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
