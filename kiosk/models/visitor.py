# kiosk/models/visitor.py
"""
Visitors table: the only persisted entity.
Rows are created at QR issuance and updated once the visitor completes
photo + badge + print at the kiosk. `ref` is the external identifier.
"""

import uuid
from datetime import datetime
from sqlalchemy import Column, String, DateTime, Boolean, Text
from kiosk.database import Base


class Visitor(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    ref = Column(String(50), unique=True, nullable=False, index=True)
    name = Column(String(200), nullable=False)
    last_name = Column(String(200), nullable=False)
    company = Column(String(200), nullable=False)
    position = Column(String(200), nullable=False)
    email = Column(String(255), nullable=False)
    phone = Column(String(50), nullable=False)
    event_id = Column(String(36), nullable=False, index=True)
    registered = Column(Boolean, default=False, nullable=False)

    photo_url = Column(Text)
    qr_url = Column(Text)
    badge_url = Column(Text)
    card_url = Column(Text)
    print_url = Column(Text)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow,
                        onupdate=datetime.utcnow, index=True)

    def __repr__(self):
        return f"<Visitor {self.ref} name={self.name} registered={self.registered}>"
