import boto3
import pytest
from boto3.dynamodb.types import TypeSerializer
from botocore.stub import Stubber

from ddb_store import DynamoDBStore
from errors import ConflictError, StoreError, ValidationError

BOOKINGS = "restaurant-bookings"
SLOTS = "restaurant-booking-slots"


@pytest.fixture
def ddb(monkeypatch):
    monkeypatch.setenv("BOOKINGS_TABLE", BOOKINGS)
    monkeypatch.setenv("SLOTS_TABLE", SLOTS)
    client = boto3.client(
        "dynamodb",
        region_name="us-east-1",
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
    )
    store = DynamoDBStore(client=client, create_tables=False)
    with Stubber(client) as stubber:
        yield store, stubber
        stubber.assert_no_pending_responses()


def item(booking_id, **fields):
    record = {
        "firstName": "Ada",
        "lastName": "Lovelace",
        "phone": "555-0100",
        "email": "ada@example.com",
        "date": "2024-05-01",
        "time": "19:00",
        "table": 3,
        "createdAt": "2024-04-01T10:00:00+00:00",
        "updatedAt": "2024-04-01T10:00:00+00:00",
    }
    record.update(fields)
    serializer = TypeSerializer()
    out = {k: serializer.serialize(v) for k, v in record.items()}
    out["booking_id"] = {"S": booking_id}
    return out


def fields():
    return {
        "firstName": "Ada",
        "lastName": "Lovelace",
        "phone": "555-0100",
        "email": "ada@example.com",
        "date": "2024-05-01",
        "time": "19:00",
        "table": 3,
    }


def test_insert_assigns_identity(ddb):
    store, stubber = ddb
    stubber.add_response("transact_write_items", {})

    booking = store.insert(fields())

    assert booking["id"]
    assert booking["createdAt"] == booking["updatedAt"]
    assert booking["table"] == 3


def test_insert_taken_slot_is_conflict(ddb):
    store, stubber = ddb
    stubber.add_client_error(
        "transact_write_items",
        service_error_code="TransactionCanceledException",
        modeled_fields={"CancellationReasons": [{"Code": "None"}, {"Code": "ConditionalCheckFailed"}]},
    )

    with pytest.raises(ConflictError):
        store.insert(fields())


def test_insert_backend_failure_is_store_error(ddb):
    store, stubber = ddb
    stubber.add_client_error("transact_write_items", service_error_code="InternalServerError", http_status_code=500)

    with pytest.raises(StoreError):
        store.insert(fields())


def test_find_filters_and_sorts(ddb):
    store, stubber = ddb
    stubber.add_response("scan", {
        "Items": [
            item("b2", date="2024-05-02", time="18:00", email="grace@navy.mil"),
            item("b1", date="2024-05-01", time="20:00"),
            item("b3", date="2024-05-01", time="18:30", email="GRACE@example.com"),
        ],
        "Count": 3,
        "ScannedCount": 3,
    }, {"TableName": BOOKINGS})

    bookings = store.find(email="grace")

    assert [b["id"] for b in bookings] == ["b3", "b2"]
    assert all(isinstance(b["table"], int) for b in bookings)


def test_find_follows_scan_pages(ddb):
    store, stubber = ddb
    stubber.add_response("scan", {
        "Items": [item("b1")],
        "LastEvaluatedKey": {"booking_id": {"S": "b1"}},
    }, {"TableName": BOOKINGS})
    stubber.add_response("scan", {
        "Items": [item("b2", time="18:00")],
    }, {"TableName": BOOKINGS, "ExclusiveStartKey": {"booking_id": {"S": "b1"}}})

    assert [b["id"] for b in store.find()] == ["b2", "b1"]


def test_find_one_by_slot(ddb):
    store, stubber = ddb
    stubber.add_response("get_item", {"Item": {
        "slot_key": {"S": "2024-05-01#19:00#3"},
        "booking_id": {"S": "b1"},
    }}, {"TableName": SLOTS, "Key": {"slot_key": {"S": "2024-05-01#19:00#3"}}, "ConsistentRead": True})
    stubber.add_response("get_item", {"Item": item("b1")},
                         {"TableName": BOOKINGS, "Key": {"booking_id": {"S": "b1"}}, "ConsistentRead": True})

    booking = store.find_one("2024-05-01", "19:00", 3)

    assert booking["id"] == "b1"
    assert booking["table"] == 3


def test_find_one_free_slot(ddb):
    store, stubber = ddb
    stubber.add_response("get_item", {})

    assert store.find_one("2024-05-01", "19:00", 3) is None


def test_update_into_taken_slot_is_conflict(ddb):
    store, stubber = ddb
    stubber.add_response("get_item", {"Item": item("b1")})
    stubber.add_client_error(
        "transact_write_items",
        service_error_code="TransactionCanceledException",
        modeled_fields={"CancellationReasons": [
            {"Code": "None"}, {"Code": "None"}, {"Code": "ConditionalCheckFailed"},
        ]},
    )

    with pytest.raises(ConflictError):
        store.update_by_id("b1", {"table": 4})


def test_update_same_slot(ddb):
    store, stubber = ddb
    stubber.add_response("get_item", {"Item": item("b1")})
    stubber.add_response("transact_write_items", {})

    updated = store.update_by_id("b1", {"phone": "555-0199"})

    assert updated["phone"] == "555-0199"
    assert updated["createdAt"] == "2024-04-01T10:00:00+00:00"
    assert updated["updatedAt"] != updated["createdAt"]


def test_update_blank_field_rejected(ddb):
    store, stubber = ddb
    stubber.add_response("get_item", {"Item": item("b1")})

    with pytest.raises(ValidationError):
        store.update_by_id("b1", {"email": ""})


def test_update_unknown(ddb):
    store, stubber = ddb
    stubber.add_response("get_item", {})

    assert store.update_by_id("missing", {"time": "20:00"}) is None


def test_delete_removes_booking_and_slot_together(ddb):
    store, stubber = ddb
    stubber.add_response("get_item", {"Item": item("b1")},
                         {"TableName": BOOKINGS, "Key": {"booking_id": {"S": "b1"}}, "ConsistentRead": True})
    stubber.add_response("transact_write_items", {}, {"TransactItems": [
        {"Delete": {
            "TableName": BOOKINGS,
            "Key": {"booking_id": {"S": "b1"}},
            "ConditionExpression": "attribute_exists(booking_id)",
        }},
        {"Delete": {
            "TableName": SLOTS,
            "Key": {"slot_key": {"S": "2024-05-01#19:00#3"}},
            "ConditionExpression": "booking_id = :id",
            "ExpressionAttributeValues": {":id": {"S": "b1"}},
        }},
    ]})

    assert store.delete_by_id("b1") is True


def test_delete_failure_leaves_nothing_half_done(ddb):
    store, stubber = ddb
    stubber.add_response("get_item", {"Item": item("b1")})
    stubber.add_client_error("transact_write_items", service_error_code="InternalServerError", http_status_code=500)
    # booking and slot are both still there afterwards
    stubber.add_response("get_item", {"Item": {
        "slot_key": {"S": "2024-05-01#19:00#3"},
        "booking_id": {"S": "b1"},
    }})
    stubber.add_response("get_item", {"Item": item("b1")})

    with pytest.raises(StoreError):
        store.delete_by_id("b1")
    assert store.find_one("2024-05-01", "19:00", 3)["id"] == "b1"


def test_delete_raced_by_another_delete(ddb):
    store, stubber = ddb
    stubber.add_response("get_item", {"Item": item("b1")})
    stubber.add_client_error(
        "transact_write_items",
        service_error_code="TransactionCanceledException",
        modeled_fields={"CancellationReasons": [{"Code": "ConditionalCheckFailed"}, {"Code": "None"}]},
    )

    assert store.delete_by_id("b1") is False


def test_delete_unknown(ddb):
    store, stubber = ddb
    stubber.add_response("get_item", {})

    assert store.delete_by_id("missing") is False
