# Overview: Shared Flask extension instances; models, services and the CLI all use this db.

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

db = SQLAlchemy()
# Revisions live in backend/migrations/versions
migrate = Migrate()
