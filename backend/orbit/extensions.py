"""
extensions.py - Flask extension singletons.

Pattern:
    1. Create the extension object here (no app attached yet).
    2. Call init_app(app) inside the app factory in orbit/__init__.py.
    3. Import `db` or `ma` from here wherever needed.

The store handle that services receive is `db.session`. Services never import
it themselves; routes pass it in as the `session` argument, so unit tests can
hand them a mock instead.
"""

from flask_marshmallow import Marshmallow
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()

# Validation schemas in orbit/schemas/ inherit from marshmallow.Schema, NOT
# ma.Schema: ma.Schema needs an application context, and the unit tests
# instantiate schemas without one.
ma = Marshmallow()
