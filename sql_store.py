# ======================================
# sql_store.py - SQLAlchemy storage layer
# ======================================
import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from errors import ConflictError, StoreError, ValidationError
from models import Booking, db
from validation import missing_fields

logger = logging.getLogger(__name__)


class SQLStore:
    """Booking store on top of Flask-SQLAlchemy.

    The (date, time, table) slot is a UNIQUE constraint in the schema, so a
    racing second insert for the same slot fails in the database and is
    reported as ConflictError. All methods expect an active app context.
    """

    VERSION = "1.0-sql-unique-slot"

    def __init__(self, app):
        db.init_app(app)
        with app.app_context():
            db.create_all()
        logger.info(f"SQL store ready: {app.config.get('SQLALCHEMY_DATABASE_URI')}")

    def test_connection(self):
        try:
            db.session.execute(select(1))
            return True
        except SQLAlchemyError as e:
            logger.error(f"Database connection failed: {e}")
            return False

    # ========== reads ==========
    def find(self, date=None, email=None, phone=None):
        query = select(Booking)
        if date:
            query = query.where(Booking.date == date)
        if email:
            query = query.where(Booking.email.icontains(email, autoescape=True))
        if phone:
            query = query.where(Booking.phone.icontains(phone, autoescape=True))
        query = query.order_by(Booking.date.asc(), Booking.time.asc())
        try:
            rows = db.session.scalars(query).all()
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to query bookings: {e}") from e
        return [row.to_dict() for row in rows]

    def find_one(self, date, time, table):
        query = select(Booking).where(
            Booking.date == date,
            Booking.time == time,
            Booking.table_number == table,
        )
        try:
            row = db.session.scalars(query).first()
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to look up slot: {e}") from e
        return row.to_dict() if row else None

    def get_by_id(self, booking_id):
        try:
            row = db.session.get(Booking, booking_id)
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to load booking {booking_id}: {e}") from e
        return row.to_dict() if row else None

    def export_all(self):
        try:
            rows = db.session.scalars(select(Booking)).all()
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to export bookings: {e}") from e
        return [row.to_dict() for row in rows]

    # ========== writes ==========
    def insert(self, record):
        booking = Booking()
        booking.apply(record)
        db.session.add(booking)
        self._commit(f"insert slot {record.get('date')} {record.get('time')} table {record.get('table')}")
        logger.info(f"Booking saved: {booking.id}")
        return booking.to_dict()

    def update_by_id(self, booking_id, fields):
        try:
            booking = db.session.get(Booking, booking_id)
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to load booking {booking_id}: {e}") from e
        if booking is None:
            return None

        merged = booking.to_dict()
        merged.update(fields)
        missing = missing_fields(merged)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

        booking.apply(fields)
        self._commit(f"update {booking_id}")
        logger.info(f"Booking updated: {booking_id}")
        return booking.to_dict()

    def delete_by_id(self, booking_id):
        try:
            booking = db.session.get(Booking, booking_id)
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to load booking {booking_id}: {e}") from e
        if booking is None:
            return False
        db.session.delete(booking)
        self._commit(f"delete {booking_id}")
        logger.info(f"Booking deleted: {booking_id}")
        return True

    def _commit(self, action):
        try:
            db.session.commit()
        except IntegrityError as e:
            db.session.rollback()
            logger.warning(f"Slot constraint rejected {action}")
            raise ConflictError() from e
        except SQLAlchemyError as e:
            db.session.rollback()
            raise StoreError(f"Failed to {action}: {e}") from e
