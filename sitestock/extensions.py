"""
Extension singletons shared by models, services and blueprints.

They are created unbound here and attached to the application in
sitestock.create_app(), so importing a module never needs an app.
"""

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_login import LoginManager
from flask_wtf import CSRFProtect

db = SQLAlchemy()
migrate = Migrate()  # `flask db ...` commands
login_manager = LoginManager()
csrf = CSRFProtect()
