# ======================================
# app.py - restaurant booking API
# ======================================

from flask import Flask, Blueprint, current_app, request, jsonify, send_file
from flask_cors import CORS
from werkzeug.security import check_password_hash, generate_password_hash
from datetime import datetime, timezone, timedelta
from functools import wraps
import io
import os
import jwt
import logging

from booking_service import BookingService
from errors import BookingError, StoreError

logging.basicConfig(level=os.environ.get('LOG_LEVEL', 'INFO').upper())
logger = logging.getLogger(__name__)

APP_VERSION = "1.0"

bp = Blueprint("bookings", __name__)


def _env_flag(name, default):
    return os.environ.get(name, default).lower() == 'true'


def load_config():
    """Settings from the environment; ``create_app`` may override any of them."""
    return {
        'USE_DYNAMODB': _env_flag('USE_DYNAMODB', 'false'),
        'SQLALCHEMY_DATABASE_URI': os.environ.get('DATABASE_URL', 'sqlite:///bookings.db'),
        'ADMIN_USERNAME': os.environ.get('ADMIN_USERNAME', 'admin'),
        'ADMIN_PASSWORD': os.environ.get('ADMIN_PASSWORD', '123'),
        'ADMIN_PASSWORD_HASH': os.environ.get('ADMIN_PASSWORD_HASH'),
        'JWT_SECRET': os.environ.get('JWT_SECRET', 'your-secret-key-change-this-in-production'),
        'ENABLE_ADMIN_AUTH': _env_flag('ENABLE_ADMIN_AUTH', 'false'),
        'CORS_ORIGINS': os.environ.get('CORS_ORIGINS', 'http://localhost:3000'),
    }


def build_store(app):
    if app.config['USE_DYNAMODB']:
        from ddb_store import DynamoDBStore
        logger.info("Using DynamoDB as storage backend")
        return DynamoDBStore()
    from sql_store import SQLStore
    logger.info("Using SQL database as storage backend")
    return SQLStore(app)


def create_app(test_config=None, store=None):
    app = Flask(__name__)
    app.config.from_mapping(load_config())
    if test_config:
        app.config.from_mapping(test_config)

    # only the hash is kept around
    if not app.config.get('ADMIN_PASSWORD_HASH'):
        app.config['ADMIN_PASSWORD_HASH'] = generate_password_hash(app.config['ADMIN_PASSWORD'])
    app.config.pop('ADMIN_PASSWORD', None)

    origins = [o.strip() for o in app.config['CORS_ORIGINS'].split(',') if o.strip()]
    CORS(app, origins=origins, methods=["GET", "POST", "PUT", "DELETE"], supports_credentials=True)

    if store is None:
        store = build_store(app)
    app.extensions['booking_service'] = BookingService(store)

    app.register_blueprint(bp)
    app.register_error_handler(BookingError, handle_booking_error)

    logger.info(f"Admin authentication: {'ENABLED' if app.config['ENABLE_ADMIN_AUTH'] else 'DISABLED'}")
    return app


def handle_booking_error(e):
    if isinstance(e, StoreError):
        logger.error(f"Unhandled store error: {e}", exc_info=True)
        return jsonify(error="Internal server error"), 500
    return jsonify(error=e.message), e.status_code


def _service():
    return current_app.extensions['booking_service']


# ---------- token check ----------
def require_admin_token(f):
    @wraps(f)
    def decorated(*args, **kwargs):
        if not current_app.config['ENABLE_ADMIN_AUTH']:
            return f(*args, **kwargs)

        token = request.headers.get('Authorization')
        if not token:
            return jsonify({'success': False, 'message': 'No token provided'}), 401

        scheme, _, token = token.partition(' ')
        if scheme != 'Bearer' or not token.strip():
            return jsonify({'success': False, 'message': 'Invalid token'}), 401

        try:
            payload = jwt.decode(token.strip(), current_app.config['JWT_SECRET'], algorithms=['HS256'])
            if payload.get('username') != current_app.config['ADMIN_USERNAME']:
                return jsonify({'success': False, 'message': 'Invalid token'}), 401
        except jwt.ExpiredSignatureError:
            return jsonify({'success': False, 'message': 'Token expired'}), 401
        except jwt.InvalidTokenError:
            return jsonify({'success': False, 'message': 'Invalid token'}), 401

        return f(*args, **kwargs)
    return decorated


# ---------- housekeeping ----------
@bp.get("/health")
def health():
    return jsonify(ok=True)


@bp.get("/api/version")
def get_version():
    store = _service().store
    return jsonify(
        app_version=APP_VERSION,
        store_type="DynamoDB" if current_app.config['USE_DYNAMODB'] else "SQL",
        store_version=getattr(store, 'VERSION', 'unknown'),
    )


@bp.get("/test-connection")
def test_connection():
    store_type = "DynamoDB" if current_app.config['USE_DYNAMODB'] else "SQL"
    if _service().store.test_connection():
        return jsonify({'status': 'success', 'message': f'{store_type} connection OK', 'store_type': store_type})
    return jsonify({'status': 'error', 'message': f'{store_type} connection failed', 'store_type': store_type}), 500


# ---------- admin login ----------
@bp.post("/admin/login")
def admin_login():
    data = request.get_json(silent=True)
    if not data or not isinstance(data, dict):
        return jsonify({'success': False, 'message': 'No data provided'}), 400

    username = data.get('username')
    password = data.get('password')

    if (isinstance(username, str) and isinstance(password, str)
            and username == current_app.config['ADMIN_USERNAME']
            and check_password_hash(current_app.config['ADMIN_PASSWORD_HASH'], password)):
        payload = {
            'username': username,
            'exp': datetime.now(timezone.utc) + timedelta(hours=24)
        }
        token = jwt.encode(payload, current_app.config['JWT_SECRET'], algorithm='HS256')
        return jsonify({'success': True, 'message': 'Login successful', 'token': token})

    logger.warning(f"Failed admin login for {username!r}")
    return jsonify({'success': False, 'message': 'Invalid credentials'}), 401


@bp.get("/admin/verify")
@require_admin_token
def admin_verify():
    return jsonify({'success': True, 'message': 'Token valid'})


# ---------- bookings ----------
@bp.get("/bookings")
@require_admin_token
def list_bookings():
    try:
        bookings = _service().list_bookings(
            date=request.args.get("date") or None,
            email=request.args.get("email") or None,
            phone=request.args.get("phone") or None,
        )
    except StoreError as e:
        logger.error(f"Error fetching bookings: {e}", exc_info=True)
        return jsonify(error="Failed to fetch bookings"), 500
    return jsonify(bookings)


@bp.post("/bookings")
def create_booking():
    payload = request.get_json(silent=True)
    try:
        booking = _service().create_booking(payload)
    except StoreError as e:
        logger.error(f"Error saving booking: {e}", exc_info=True)
        return jsonify(error="Booking failed. Please try again."), 500
    logger.info(f"Booking created: {booking['id']}")
    return jsonify(booking), 201


@bp.delete("/bookings/<booking_id>")
@require_admin_token
def delete_booking(booking_id):
    try:
        _service().delete_booking(booking_id)
    except StoreError as e:
        logger.error(f"Error deleting booking: {e}", exc_info=True)
        return jsonify(error="Failed to delete booking"), 500
    return jsonify(message="Booking deleted successfully", id=booking_id)


@bp.put("/bookings/<booking_id>")
@require_admin_token
def update_booking(booking_id):
    payload = request.get_json(silent=True)
    try:
        booking = _service().update_booking(booking_id, payload)
    except StoreError as e:
        logger.error(f"Error updating booking: {e}", exc_info=True)
        return jsonify(error="Failed to update booking"), 500
    return jsonify(booking)


@bp.get("/bookings/export/csv")
@require_admin_token
def export_csv():
    try:
        text = _service().export_csv()
    except StoreError as e:
        logger.error(f"Error exporting CSV: {e}", exc_info=True)
        return jsonify(error="Failed to export CSV"), 500

    mem = io.BytesIO(text.encode("utf-8"))
    mem.seek(0)
    return send_file(mem, mimetype="text/csv", as_attachment=True, download_name="bookings.csv")


# ---------- startup ----------
if __name__ == "__main__":
    port = int(os.getenv("PORT", 5000))
    create_app().run(host="0.0.0.0", port=port, debug=False)
