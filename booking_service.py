# ======================================
# booking_service.py - booking orchestration
# ======================================
import csv
import io
import logging

from errors import ConflictError, NotFoundError, ValidationError
from validation import BOOKING_FIELDS, clean_fields, missing_fields, slot_of

logger = logging.getLogger(__name__)


class BookingService:
    """Validation and slot arbitration on top of a booking store.

    ``store`` is either a ``SQLStore`` or a ``DynamoDBStore``; both reject a
    second booking for a taken slot on their own, the lookup here only turns
    the common case into a clean error before any write happens.
    """

    def __init__(self, store):
        self.store = store

    def create_booking(self, payload):
        if not isinstance(payload, dict):
            raise ValidationError()
        fields = clean_fields(payload)
        if missing_fields(fields):
            raise ValidationError()

        date, time, table = slot_of(fields)
        if self.store.find_one(date, time, table):
            logger.warning(f"Slot taken: {date} {time} table {table}")
            raise ConflictError()

        return self.store.insert(fields)

    def list_bookings(self, date=None, email=None, phone=None):
        return self.store.find(date=date, email=email, phone=phone)

    def update_booking(self, booking_id, payload):
        if not isinstance(payload, dict):
            raise ValidationError("Invalid update payload")
        fields = clean_fields(payload)

        current = self.store.get_by_id(booking_id)
        if current is None:
            raise NotFoundError()

        merged = dict(current)
        merged.update(fields)
        missing = missing_fields(merged)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

        new_slot = slot_of(merged)
        if new_slot != slot_of(current):
            holder = self.store.find_one(*new_slot)
            if holder and holder["id"] != booking_id:
                logger.warning(f"Slot taken on update of {booking_id}: {new_slot}")
                raise ConflictError()

        updated = self.store.update_by_id(booking_id, fields)
        if updated is None:
            raise NotFoundError()
        return updated

    def delete_booking(self, booking_id):
        if not self.store.delete_by_id(booking_id):
            raise NotFoundError()
        return booking_id

    def export_csv(self):
        out = io.StringIO()
        writer = csv.writer(out)
        writer.writerow(BOOKING_FIELDS)
        for booking in self.store.export_all():
            writer.writerow([booking.get(name, "") for name in BOOKING_FIELDS])
        return out.getvalue()
