from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import UniqueConstraint
from datetime import datetime, timezone
import uuid

db = SQLAlchemy()


def _utcnow():
    return datetime.now(timezone.utc)


def _isoformat(value):
    if value is None:
        return None
    # SQLite hands back naive datetimes; they were written as UTC
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


class Booking(db.Model):
    __tablename__ = "bookings"
    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    first_name = db.Column(db.String(128), nullable=False)
    last_name = db.Column(db.String(128), nullable=False)
    phone = db.Column(db.String(64), nullable=False)
    email = db.Column(db.String(255), nullable=False)
    date = db.Column(db.String(10), nullable=False, index=True)
    time = db.Column(db.String(16), nullable=False)
    table_number = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)
    __table_args__ = (
        UniqueConstraint("date", "time", "table_number", name="uq_booking_slot"),
    )

    # public field name -> column attribute
    FIELD_MAP = {
        "firstName": "first_name",
        "lastName": "last_name",
        "phone": "phone",
        "email": "email",
        "date": "date",
        "time": "time",
        "table": "table_number",
    }

    def apply(self, fields):
        for name, value in fields.items():
            attr = self.FIELD_MAP.get(name)
            if attr:
                setattr(self, attr, value)

    def to_dict(self):
        data = {"id": self.id}
        for name, attr in self.FIELD_MAP.items():
            data[name] = getattr(self, attr)
        data["createdAt"] = _isoformat(self.created_at)
        data["updatedAt"] = _isoformat(self.updated_at)
        return data
