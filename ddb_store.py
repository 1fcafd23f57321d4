# ======================================
# ddb_store.py - DynamoDB storage layer
# ======================================
import boto3
import os
from datetime import datetime, timezone
from botocore.exceptions import ClientError
from boto3.dynamodb.types import TypeDeserializer, TypeSerializer
import logging
from decimal import Decimal
import uuid

from errors import ConflictError, StoreError, ValidationError
from validation import missing_fields, slot_of

logger = logging.getLogger(__name__)


def slot_key(date, time, table):
    return f"{date}#{time}#{table}"


class DynamoDBStore:
    """Booking store on DynamoDB.

    Bookings live in one table keyed by ``booking_id``. A second table holds
    one item per taken slot, keyed by ``date#time#table``. Inserts, slot
    moves and deletes write both tables in a single transaction, with an
    ``attribute_not_exists`` condition on the slot item, so a conflicting
    writer is rejected by DynamoDB itself.
    """

    def __init__(self, client=None, create_tables=True):
        self.VERSION = "1.0-transactional-slots"

        self.bookings_table = os.environ.get('BOOKINGS_TABLE', 'restaurant-bookings')
        self.slots_table = os.environ.get('SLOTS_TABLE', 'restaurant-booking-slots')

        self.client = client or boto3.client('dynamodb')
        self._serializer = TypeSerializer()
        self._deserializer = TypeDeserializer()

        if create_tables:
            self._ensure_tables_exist()

    def _ensure_tables_exist(self):
        try:
            self._create_table(self.bookings_table, 'booking_id')
            self._create_table(self.slots_table, 'slot_key')
        except ClientError as e:
            logger.error(f"Failed to create DynamoDB tables: {e}")

    def _create_table(self, table_name, hash_key):
        try:
            self.client.describe_table(TableName=table_name)
            logger.info(f"Table {table_name} already exists")
        except ClientError as e:
            if e.response['Error']['Code'] != 'ResourceNotFoundException':
                raise
            logger.info(f"Creating table: {table_name}")
            self.client.create_table(
                TableName=table_name,
                KeySchema=[{'AttributeName': hash_key, 'KeyType': 'HASH'}],
                AttributeDefinitions=[{'AttributeName': hash_key, 'AttributeType': 'S'}],
                BillingMode='PAY_PER_REQUEST',
            )
            waiter = self.client.get_waiter('table_exists')
            waiter.wait(TableName=table_name)
            logger.info(f"Table {table_name} created")

    def test_connection(self):
        try:
            self.client.list_tables()
            logger.info("DynamoDB connection OK")
            return True
        except ClientError as e:
            logger.error(f"DynamoDB connection failed: {e}")
            return False

    # ========== reads ==========
    def find(self, date=None, email=None, phone=None):
        bookings = self._scan_all()
        if date:
            bookings = [b for b in bookings if b.get('date') == date]
        if email:
            needle = email.lower()
            bookings = [b for b in bookings if needle in str(b.get('email', '')).lower()]
        if phone:
            needle = phone.lower()
            bookings = [b for b in bookings if needle in str(b.get('phone', '')).lower()]
        bookings.sort(key=lambda b: (b.get('date', ''), b.get('time', '')))
        logger.info(f"Found {len(bookings)} bookings")
        return bookings

    def find_one(self, date, time, table):
        try:
            response = self.client.get_item(
                TableName=self.slots_table,
                Key={'slot_key': {'S': slot_key(date, time, table)}},
                ConsistentRead=True,
            )
        except ClientError as e:
            raise StoreError(f"Failed to look up slot: {e}") from e
        if 'Item' not in response:
            return None
        return self.get_by_id(response['Item']['booking_id']['S'])

    def get_by_id(self, booking_id):
        try:
            response = self.client.get_item(
                TableName=self.bookings_table,
                Key={'booking_id': {'S': booking_id}},
                ConsistentRead=True,
            )
        except ClientError as e:
            raise StoreError(f"Failed to load booking {booking_id}: {e}") from e
        if 'Item' not in response:
            return None
        return self._to_booking(response['Item'])

    def export_all(self):
        return self._scan_all()

    def _scan_all(self):
        bookings = []
        scan_kwargs = {'TableName': self.bookings_table}
        try:
            while True:
                response = self.client.scan(**scan_kwargs)
                for item in response.get('Items', []):
                    bookings.append(self._to_booking(item))
                if 'LastEvaluatedKey' not in response:
                    break
                scan_kwargs['ExclusiveStartKey'] = response['LastEvaluatedKey']
        except ClientError as e:
            raise StoreError(f"Failed to scan bookings: {e}") from e
        return bookings

    # ========== writes ==========
    def insert(self, record):
        now = self._now()
        booking = dict(record)
        booking['id'] = str(uuid.uuid4())
        booking['createdAt'] = now
        booking['updatedAt'] = now

        self._transact([
            {'Put': {
                'TableName': self.bookings_table,
                'Item': self._to_item(booking),
                'ConditionExpression': 'attribute_not_exists(booking_id)',
            }},
            self._claim_slot(booking),
        ], claim_index=1)
        logger.info(f"Booking saved: {booking['id']}")
        return booking

    def update_by_id(self, booking_id, fields):
        current = self.get_by_id(booking_id)
        if current is None:
            return None

        updated = dict(current)
        updated.update(fields)
        missing = missing_fields(updated)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")
        updated['updatedAt'] = self._now()

        put_booking = {'Put': {
            'TableName': self.bookings_table,
            'Item': self._to_item(updated),
            'ConditionExpression': 'attribute_exists(booking_id)',
        }}
        if slot_of(updated) == slot_of(current):
            self._transact([put_booking])
        else:
            self._transact([put_booking, self._release_slot(current), self._claim_slot(updated)],
                           claim_index=2)
        logger.info(f"Booking updated: {booking_id}")
        return updated

    def delete_by_id(self, booking_id):
        booking = self.get_by_id(booking_id)
        if booking is None:
            return False

        try:
            self.client.transact_write_items(TransactItems=[
                {'Delete': {
                    'TableName': self.bookings_table,
                    'Key': {'booking_id': {'S': booking_id}},
                    'ConditionExpression': 'attribute_exists(booking_id)',
                }},
                self._release_slot(booking),
            ])
        except ClientError as e:
            reasons = e.response.get('CancellationReasons', [])
            if (e.response['Error']['Code'] == 'TransactionCanceledException'
                    and reasons and reasons[0].get('Code') == 'ConditionalCheckFailed'):
                logger.info(f"Booking {booking_id} was already deleted")
                return False
            raise StoreError(f"Failed to delete booking {booking_id}: {e}") from e
        logger.info(f"Booking deleted: {booking_id}")
        return True

    # ========== helpers ==========
    def _claim_slot(self, booking):
        return {'Put': {
            'TableName': self.slots_table,
            'Item': {
                'slot_key': {'S': slot_key(*slot_of(booking))},
                'booking_id': {'S': booking['id']},
            },
            'ConditionExpression': 'attribute_not_exists(slot_key)',
        }}

    def _release_slot(self, booking):
        return {'Delete': {
            'TableName': self.slots_table,
            'Key': {'slot_key': {'S': slot_key(*slot_of(booking))}},
            'ConditionExpression': 'booking_id = :id',
            'ExpressionAttributeValues': {':id': {'S': booking['id']}},
        }}

    def _transact(self, items, claim_index=None):
        try:
            self.client.transact_write_items(TransactItems=items)
        except ClientError as e:
            if e.response['Error']['Code'] == 'TransactionCanceledException':
                reasons = e.response.get('CancellationReasons', [])
                if (claim_index is not None and len(reasons) > claim_index
                        and reasons[claim_index].get('Code') == 'ConditionalCheckFailed'):
                    logger.warning("Slot already taken, transaction cancelled")
                    raise ConflictError() from e
            raise StoreError(f"DynamoDB write failed: {e}") from e

    def _now(self):
        return datetime.now(timezone.utc).isoformat()

    def _to_item(self, booking):
        item = {k: self._serializer.serialize(self._convert_value_to_dynamodb(v))
                for k, v in booking.items() if k != 'id'}
        item['booking_id'] = {'S': booking['id']}
        return item

    def _to_booking(self, item):
        data = {k: self._convert_value_from_dynamodb(self._deserializer.deserialize(v))
                for k, v in item.items()}
        data['id'] = data.pop('booking_id')
        return data

    def _convert_value_to_dynamodb(self, value):
        if isinstance(value, float):
            return Decimal(str(value))
        return value

    def _convert_value_from_dynamodb(self, value):
        if isinstance(value, Decimal):
            return float(value) if value % 1 else int(value)
        return value
