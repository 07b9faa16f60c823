# Overview: Shared Flask extensions; one SQLAlchemy handle and the Alembic migration binding.

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

db = SQLAlchemy()
migrate = Migrate()
