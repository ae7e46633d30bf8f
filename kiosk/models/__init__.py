# Event Check-in Kiosk: Database Models
# Import all models here for SQLAlchemy discovery

from kiosk.models.visitor import Visitor   # noqa
