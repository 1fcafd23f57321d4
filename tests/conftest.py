import pytest

from app import create_app


@pytest.fixture
def app():
    app = create_app({
        "TESTING": True,
        "USE_DYNAMODB": False,
        "SQLALCHEMY_DATABASE_URI": "sqlite://",
        "ENABLE_ADMIN_AUTH": False,
        "ADMIN_USERNAME": "admin",
        "ADMIN_PASSWORD": "123",
        "ADMIN_PASSWORD_HASH": None,
        "JWT_SECRET": "test-secret-key-with-at-least-32-bytes",
    })
    yield app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def service(app):
    with app.app_context():
        yield app.extensions["booking_service"]


@pytest.fixture
def make_booking():
    def _make(**overrides):
        booking = {
            "firstName": "Ada",
            "lastName": "Lovelace",
            "phone": "+44 20 7946 0018",
            "email": "Ada@Example.com",
            "date": "2024-05-01",
            "time": "19:00",
            "table": 3,
        }
        booking.update(overrides)
        return booking
    return _make
