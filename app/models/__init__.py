"""
Patient Enrollment Platform
Shared SQLAlchemy handle.

Every model module imports ``db`` from here so the application factory can
bind a single extension instance with ``db.init_app(app)``.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
