"""
Commission marketplace lifecycle engine
Shadow-store persistence.

Holds the Flask-SQLAlchemy handle shared by every local table. The local
tables only ever receive writes the adapter could not accept.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
