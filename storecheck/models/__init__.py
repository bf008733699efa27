"""
StoreCheck
Shared SQLAlchemy handle.

All model modules import ``db`` from here:
    from storecheck.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
