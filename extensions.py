"""
extensions.py - Flask Extensions
Initialize Flask extensions here to avoid circular imports.
Extensions are created here but initialized in app.py with init_app().
"""

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_login import LoginManager
from flask_bcrypt import Bcrypt
from flask_mail import Mail

# Database ORM (grades, report cards, users...)
db = SQLAlchemy()

# Database Migration Tool
# Usage: flask db init, flask db migrate, flask db upgrade
migrate = Migrate()

# Current-user handling (fed by bearer tokens, see services/tokens.py)
login_manager = LoginManager()

# Password Hashing
bcrypt = Bcrypt()

# Outgoing mail (report card publication emails)
mail = Mail()
