# Overview: Flask extension instances for database, migrations and live feeds.

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

from .services.feed_service import LiveFeeds

db = SQLAlchemy()
migrate = Migrate()
feeds = LiveFeeds()
