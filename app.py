"""
Dubai Quote Desk: Flask Backend
===============================
Back-office API for a Dubai travel agency:

- Auth: email/password sign-up, sign-in, session, sign-out
- Admin CRUD: hotels (+ nightly rates), tours, inclusions, bank accounts
- Quotes: calculate, save, edit (recalculated), status workflow,
  print page, quote PDF
- Invoices and hotel/tour vouchers for saved quotes (PDF)
- Itinerary items per quote and shareable itinerary links
- Bookings list (confirmed quotes) and an analytics summary

All prices come from quote_engine. Handlers never compute prices.
"""

from flask import Flask, request, jsonify, session, send_file
from flask.json.provider import DefaultJSONProvider
from flask_cors import CORS
from functools import wraps
from werkzeug.security import generate_password_hash, check_password_hash
from dotenv import load_dotenv
import psycopg2
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from io import BytesIO
import os
import logging
import secrets

from quote_engine import (
    QuotePricingEngine,
    QuoteEngineError,
    QuoteValidationError,
    TOUR_TYPES,
    draft_from_payload,
)
from quote_documents import render_quote_html, render_print_page, render_text_breakdown
from quote_records import (
    QUOTE_STATUSES,
    build_quote_record,
    draft_from_quote_data,
    generate_reference_number,
    hotel_options_from_record,
)
from invoice import build_invoice, parse_distribution
from pdf_export import (
    build_voucher_model,
    render_invoice_pdf,
    render_quote_pdf,
    render_voucher_pdf,
)

load_dotenv()

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


# =====================================================
# JSON
# =====================================================

def json_serial(obj):
    if isinstance(obj, Decimal):
        return float(obj)
    if isinstance(obj, (datetime, date, time)):
        return obj.isoformat()
    return DefaultJSONProvider.default(obj)


class QuoteDeskJSONProvider(DefaultJSONProvider):
    default = staticmethod(json_serial)


app = Flask(__name__)
app.secret_key = os.environ.get('SECRET_KEY', 'your-secret-key-change-in-production')
app.json = QuoteDeskJSONProvider(app)
CORS(app, supports_credentials=True)

SHARE_LINK_DAYS = int(os.environ.get('SHARE_LINK_DAYS', 30))
INVOICE_DUE_DAYS = 7
USER_ROLES = ('admin', 'sales', 'booking')
INCLUSION_TYPES = ('visa', 'transfer', 'insurance', 'other')

engine = QuotePricingEngine()


# =====================================================
# DATABASE
# =====================================================

DATABASE_URL = os.environ.get('DATABASE_URL')

DB_CONFIG = {
    'host': os.environ.get('DB_HOST', 'localhost'),
    'port': int(os.environ.get('DB_PORT', 5432)),
    'database': os.environ.get('DB_NAME', 'quote_desk'),
    'user': os.environ.get('DB_USER', 'postgres'),
    'password': os.environ.get('DB_PASS', ''),
}


def get_db():
    if DATABASE_URL:
        return psycopg2.connect(DATABASE_URL)
    return psycopg2.connect(**DB_CONFIG)


def row_to_dict(cursor, row):
    if row is None:
        return None
    cols = [d[0] for d in cursor.description]
    return dict(zip(cols, row))


def rows_to_dicts(cursor, rows):
    cols = [d[0] for d in cursor.description]
    return [dict(zip(cols, r)) for r in rows]


def pick_fields(data, fields):
    """Whitelisted subset of a request body."""
    return {f: data[f] for f in fields if f in data}


def require_fields(data, fields):
    missing = [f for f in fields if data.get(f) is None or data.get(f) == '']
    if missing:
        raise QuoteValidationError(f"Missing required fields: {', '.join(missing)}")


def insert_row(cur, table, values):
    cols = list(values.keys())
    cur.execute(
        f"INSERT INTO {table} ({', '.join(cols)}) "
        f"VALUES ({', '.join(['%s'] * len(cols))}) RETURNING *",
        [values[c] for c in cols]
    )
    return row_to_dict(cur, cur.fetchone())


def update_row(cur, table, row_id, values):
    if not values:
        cur.execute(f"SELECT * FROM {table} WHERE id=%s", (row_id,))
        return row_to_dict(cur, cur.fetchone())
    assignments = ', '.join(f"{c}=%s" for c in values)
    cur.execute(
        f"UPDATE {table} SET {assignments}, updated_at=NOW() WHERE id=%s RETURNING *",
        list(values.values()) + [row_id]
    )
    return row_to_dict(cur, cur.fetchone())


def fetch_by_id(cur, table, row_id):
    cur.execute(f"SELECT * FROM {table} WHERE id=%s", (row_id,))
    return row_to_dict(cur, cur.fetchone())


def error_response(message, status):
    return jsonify({'success': False, 'error': message}), status


# =====================================================
# AUTHENTICATION
# =====================================================

def login_required(f):
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not session.get('user_id'):
            return error_response('Authentication required', 401)
        return f(*args, **kwargs)
    return decorated_function


def admin_required(f):
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not session.get('user_id'):
            return error_response('Authentication required', 401)
        if session.get('role') != 'admin':
            return error_response('Admin access required', 403)
        return f(*args, **kwargs)
    return decorated_function


def _start_session(user):
    session['user_id'] = user['id']
    session['email'] = user['email']
    session['name'] = user.get('name')
    session['role'] = user.get('role') or 'sales'


def _public_user(user):
    return {k: user.get(k) for k in ('id', 'email', 'name', 'role')}


@app.route('/api/auth/signup', methods=['POST'])
def signup():
    data = request.get_json(silent=True) or {}
    email = (data.get('email') or '').strip().lower()
    password = data.get('password') or ''
    if not email or '@' not in email:
        return error_response('A valid email is required', 400)
    if len(password) < 6:
        return error_response('Password must be at least 6 characters', 400)

    db = get_db()
    cur = db.cursor()
    try:
        cur.execute("SELECT id FROM users WHERE email=%s", (email,))
        if cur.fetchone():
            return error_response('An account with this email already exists', 409)

        user = insert_row(cur, 'users', {
            'email': email,
            'password_hash': generate_password_hash(password),
            'name': (data.get('name') or '').strip() or None,
            'role': 'sales',
        })
        db.commit()

        _start_session(user)
        logger.info(f"User signed up: {email}")
        return jsonify({'user': _public_user(user)}), 201

    except Exception as e:
        db.rollback()
        logger.error(f"Error signing up {email}: {e}", exc_info=True)
        return jsonify({'error': str(e)}), 500
    finally:
        db.close()


@app.route('/api/auth/signin', methods=['POST'])
def signin():
    data = request.get_json(silent=True) or {}
    email = (data.get('email') or '').strip().lower()
    password = data.get('password') or ''

    db = get_db()
    cur = db.cursor()
    try:
        cur.execute(
            "SELECT id, email, name, role, password_hash FROM users WHERE email=%s",
            (email,)
        )
        user = row_to_dict(cur, cur.fetchone())
        if not user or not check_password_hash(user['password_hash'], password):
            logger.info(f"Failed sign-in for {email}")
            return error_response('Invalid email or password', 401)

        _start_session(user)
        return jsonify({'user': _public_user(user)})

    except Exception as e:
        logger.error(f"Error signing in {email}: {e}", exc_info=True)
        return jsonify({'error': str(e)}), 500
    finally:
        db.close()


@app.route('/api/auth/session', methods=['GET'])
def current_session():
    if not session.get('user_id'):
        return jsonify({'user': None})
    return jsonify({'user': {
        'id': session['user_id'],
        'email': session.get('email'),
        'name': session.get('name'),
        'role': session.get('role'),
    }})


@app.route('/api/auth/signout', methods=['POST'])
def signout():
    for key in ('user_id', 'email', 'name', 'role'):
        session.pop(key, None)
    return jsonify({'message': 'Signed out'})


# =====================================================
# HOTELS
# =====================================================

HOTEL_FIELDS = (
    'name', 'location', 'description', 'star_rating',
    'base_rate', 'extra_bed_rate', 'amenities', 'images',
)


@app.route('/api/hotels', methods=['GET'])
@login_required
def list_hotels():
    search = (request.args.get('search') or '').strip()
    db = get_db()
    cur = db.cursor()
    try:
        if search:
            cur.execute(
                "SELECT * FROM hotels WHERE name ILIKE %s OR location ILIKE %s ORDER BY name",
                (f"%{search}%", f"%{search}%")
            )
        else:
            cur.execute("SELECT * FROM hotels ORDER BY name")
        result = rows_to_dicts(cur, cur.fetchall())
        return jsonify(result)
    except Exception as e:
        logger.error(f"Error listing hotels: {e}", exc_info=True)
        return jsonify({'error': str(e)}), 500
    finally:
        db.close()


@app.route('/api/hotels/<int:hid>', methods=['GET'])
@login_required
def get_hotel(hid):
    db = get_db()
    cur = db.cursor()
    try:
        hotel = fetch_by_id(cur, 'hotels', hid)
        if not hotel:
            return jsonify({'error': 'Hotel not found'}), 404
        return jsonify(hotel)
    except Exception as e:
        logger.error(f"Error fetching hotel {hid}: {e}", exc_info=True)
        return jsonify({'error': str(e)}), 500
    finally:
        db.close()


@app.route('/api/hotels', methods=['POST'])
@admin_required
def create_hotel():
    data = request.get_json(silent=True) or {}
    db = get_db()
    cur = db.cursor()
    try:
        require_fields(data, ('name', 'location'))
        hotel = insert_row(cur, 'hotels', pick_fields(data, HOTEL_FIELDS))
        db.commit()
        logger.info(f"Created hotel ID {hotel['id']}: {hotel['name']}")
        return jsonify(hotel), 201
    except QuoteValidationError as e:
        return error_response(str(e), 400)
    except Exception as e:
        db.rollback()
        logger.error(f"Error creating hotel: {e}", exc_info=True)
        return jsonify({'error': str(e)}), 500
    finally:
        db.close()


@app.route('/api/hotels/<int:hid>', methods=['PUT'])
@admin_required
def update_hotel(hid):
    data = request.get_json(silent=True) or {}
    db = get_db()
    cur = db.cursor()
    try:
        hotel = update_row(cur, 'hotels', hid, pick_fields(data, HOTEL_FIELDS))
        if not hotel:
            return jsonify({'error': 'Hotel not found'}), 404
        db.commit()
        return jsonify(hotel)
    except Exception as e:
        db.rollback()
        logger.error(f"Error updating hotel {hid}: {e}", exc_info=True)
        return jsonify({'error': str(e)}), 500
    finally:
        db.close()


@app.route('/api/hotels/<int:hid>', methods=['DELETE'])
@admin_required
def delete_hotel(hid):
    db = get_db()
    cur = db.cursor()
    try:
        cur.execute("DELETE FROM hotels WHERE id=%s RETURNING id", (hid,))
        if not cur.fetchone():
            return jsonify({'error': 'Hotel not found'}), 404
        db.commit()
        return jsonify({'message': 'Deleted'})
    except Exception as e:
        db.rollback()
        logger.error(f"Error deleting hotel {hid}: {e}", exc_info=True)
        return jsonify({'error': str(e)}), 500
    finally:
        db.close()


# =====================================================
# HOTEL RATES (per-date rate + inventory)
# =====================================================

@app.route('/api/hotels/<int:hid>/rates', methods=['GET'])
@login_required
def list_hotel_rates(hid):
    date_from = request.args.get('from')
    date_to = request.args.get('to')
    query = "SELECT * FROM hotel_rates WHERE hotel_id=%s"
    params = [hid]
    if date_from:
        query += " AND date >= %s"
        params.append(date_from)
    if date_to:
        query += " AND date <= %s"
        params.append(date_to)
    query += " ORDER BY date"

    db = get_db()
    cur = db.cursor()
    try:
        cur.execute(query, params)
        return jsonify(rows_to_dicts(cur, cur.fetchall()))
    except Exception as e:
        logger.error(f"Error listing rates for hotel {hid}: {e}", exc_info=True)
        return jsonify({'error': str(e)}), 500
    finally:
        db.close()


@app.route('/api/hotels/<int:hid>/rates', methods=['PUT'])
@admin_required
def upsert_hotel_rate(hid):
    data = request.get_json(silent=True) or {}
    db = get_db()
    cur = db.cursor()
    try:
        require_fields(data, ('date', 'rate'))
        cur.execute(
            """INSERT INTO hotel_rates (hotel_id, date, rate, inventory)
               VALUES (%s, %s, %s, %s)
               ON CONFLICT (hotel_id, date)
               DO UPDATE SET rate=EXCLUDED.rate, inventory=EXCLUDED.inventory, updated_at=NOW()
               RETURNING *""",
            (hid, data['date'], data['rate'], data.get('inventory'))
        )
        rate = row_to_dict(cur, cur.fetchone())
        db.commit()
        return jsonify(rate)
    except QuoteValidationError as e:
        return error_response(str(e), 400)
    except Exception as e:
        db.rollback()
        logger.error(f"Error saving rate for hotel {hid}: {e}", exc_info=True)
        return jsonify({'error': str(e)}), 500
    finally:
        db.close()


@app.route('/api/hotel-rates/<int:rid>', methods=['DELETE'])
@admin_required
def delete_hotel_rate(rid):
    db = get_db()
    cur = db.cursor()
    try:
        cur.execute("DELETE FROM hotel_rates WHERE id=%s", (rid,))
        db.commit()
        return jsonify({'message': 'Deleted'})
    except Exception as e:
        db.rollback()
        logger.error(f"Error deleting hotel rate {rid}: {e}", exc_info=True)
        return jsonify({'error': str(e)}), 500
    finally:
        db.close()


# =====================================================
# TOURS
# =====================================================

TOUR_FIELDS = (
    'name', 'description', 'type', 'duration', 'cost_per_person',
    'private_transfer_cost', 'transfer_included', 'highlights', 'images',
)


def _validate_tour(data):
    if 'type' in data and data['type'] not in TOUR_TYPES:
        raise QuoteValidationError(f"Tour type must be one of: {', '.join(TOUR_TYPES)}")


@app.route('/api/tours', methods=['GET'])
@login_required
def list_tours():
    tour_type = request.args.get('type')
    db = get_db()
    cur = db.cursor()
    try:
        if tour_type:
            cur.execute("SELECT * FROM tours WHERE type=%s ORDER BY name", (tour_type,))
        else:
            cur.execute("SELECT * FROM tours ORDER BY name")
        return jsonify(rows_to_dicts(cur, cur.fetchall()))
    except Exception as e:
        logger.error(f"Error listing tours: {e}", exc_info=True)
        return jsonify({'error': str(e)}), 500
    finally:
        db.close()


@app.route('/api/tours', methods=['POST'])
@admin_required
def create_tour():
    data = request.get_json(silent=True) or {}
    db = get_db()
    cur = db.cursor()
    try:
        require_fields(data, ('name', 'cost_per_person'))
        _validate_tour(data)
        tour = insert_row(cur, 'tours', pick_fields(data, TOUR_FIELDS))
        db.commit()
        logger.info(f"Created tour ID {tour['id']}: {tour['name']}")
        return jsonify(tour), 201
    except QuoteValidationError as e:
        return error_response(str(e), 400)
    except Exception as e:
        db.rollback()
        logger.error(f"Error creating tour: {e}", exc_info=True)
        return jsonify({'error': str(e)}), 500
    finally:
        db.close()


@app.route('/api/tours/<int:tid>', methods=['PUT'])
@admin_required
def update_tour(tid):
    data = request.get_json(silent=True) or {}
    db = get_db()
    cur = db.cursor()
    try:
        _validate_tour(data)
        tour = update_row(cur, 'tours', tid, pick_fields(data, TOUR_FIELDS))
        if not tour:
            return jsonify({'error': 'Tour not found'}), 404
        db.commit()
        return jsonify(tour)
    except QuoteValidationError as e:
        return error_response(str(e), 400)
    except Exception as e:
        db.rollback()
        logger.error(f"Error updating tour {tid}: {e}", exc_info=True)
        return jsonify({'error': str(e)}), 500
    finally:
        db.close()


@app.route('/api/tours/<int:tid>', methods=['DELETE'])
@admin_required
def delete_tour(tid):
    db = get_db()
    cur = db.cursor()
    try:
        cur.execute("DELETE FROM tours WHERE id=%s", (tid,))
        db.commit()
        return jsonify({'message': 'Deleted'})
    except Exception as e:
        db.rollback()
        logger.error(f"Error deleting tour {tid}: {e}", exc_info=True)
        return jsonify({'error': str(e)}), 500
    finally:
        db.close()


# =====================================================
# INCLUSIONS
# =====================================================

INCLUSION_FIELDS = ('name', 'type', 'cost', 'description', 'is_optional')


def _validate_inclusion(data):
    if 'type' in data and data['type'] not in INCLUSION_TYPES:
        raise QuoteValidationError(f"Inclusion type must be one of: {', '.join(INCLUSION_TYPES)}")


@app.route('/api/inclusions', methods=['GET'])
@login_required
def list_inclusions():
    db = get_db()
    cur = db.cursor()
    try:
        cur.execute("SELECT * FROM inclusions ORDER BY type, name")
        return jsonify(rows_to_dicts(cur, cur.fetchall()))
    except Exception as e:
        logger.error(f"Error listing inclusions: {e}", exc_info=True)
        return jsonify({'error': str(e)}), 500
    finally:
        db.close()


@app.route('/api/inclusions', methods=['POST'])
@admin_required
def create_inclusion():
    data = request.get_json(silent=True) or {}
    db = get_db()
    cur = db.cursor()
    try:
        require_fields(data, ('name',))
        _validate_inclusion(data)
        inclusion = insert_row(cur, 'inclusions', pick_fields(data, INCLUSION_FIELDS))
        db.commit()
        return jsonify(inclusion), 201
    except QuoteValidationError as e:
        return error_response(str(e), 400)
    except Exception as e:
        db.rollback()
        logger.error(f"Error creating inclusion: {e}", exc_info=True)
        return jsonify({'error': str(e)}), 500
    finally:
        db.close()


@app.route('/api/inclusions/<int:iid>', methods=['PUT'])
@admin_required
def update_inclusion(iid):
    data = request.get_json(silent=True) or {}
    db = get_db()
    cur = db.cursor()
    try:
        _validate_inclusion(data)
        inclusion = update_row(cur, 'inclusions', iid, pick_fields(data, INCLUSION_FIELDS))
        if not inclusion:
            return jsonify({'error': 'Inclusion not found'}), 404
        db.commit()
        return jsonify(inclusion)
    except QuoteValidationError as e:
        return error_response(str(e), 400)
    except Exception as e:
        db.rollback()
        logger.error(f"Error updating inclusion {iid}: {e}", exc_info=True)
        return jsonify({'error': str(e)}), 500
    finally:
        db.close()


@app.route('/api/inclusions/<int:iid>', methods=['DELETE'])
@admin_required
def delete_inclusion(iid):
    db = get_db()
    cur = db.cursor()
    try:
        cur.execute("DELETE FROM inclusions WHERE id=%s", (iid,))
        db.commit()
        return jsonify({'message': 'Deleted'})
    except Exception as e:
        db.rollback()
        logger.error(f"Error deleting inclusion {iid}: {e}", exc_info=True)
        return jsonify({'error': str(e)}), 500
    finally:
        db.close()


# =====================================================
# BANK ACCOUNTS
# =====================================================

BANK_ACCOUNT_FIELDS = (
    'bank_name', 'account_name', 'account_number', 'iban', 'swift_code',
    'branch_name', 'branch_country', 'bank_address', 'currency',
)


@app.route('/api/bank-accounts', methods=['GET'])
@login_required
def list_bank_accounts():
    db = get_db()
    cur = db.cursor()
    try:
        cur.execute("SELECT * FROM bank_accounts ORDER BY bank_name, currency")
        return jsonify(rows_to_dicts(cur, cur.fetchall()))
    except Exception as e:
        logger.error(f"Error listing bank accounts: {e}", exc_info=True)
        return jsonify({'error': str(e)}), 500
    finally:
        db.close()


@app.route('/api/bank-accounts', methods=['POST'])
@admin_required
def create_bank_account():
    data = request.get_json(silent=True) or {}
    db = get_db()
    cur = db.cursor()
    try:
        require_fields(data, (
            'bank_name', 'account_name', 'account_number', 'branch_name', 'branch_country',
        ))
        values = pick_fields(data, BANK_ACCOUNT_FIELDS)
        values.setdefault('currency', 'USD')
        account = insert_row(cur, 'bank_accounts', values)
        db.commit()
        logger.info(f"Created bank account ID {account['id']}: {account['bank_name']}")
        return jsonify(account), 201
    except QuoteValidationError as e:
        return error_response(str(e), 400)
    except Exception as e:
        db.rollback()
        logger.error(f"Error creating bank account: {e}", exc_info=True)
        return jsonify({'error': str(e)}), 500
    finally:
        db.close()


@app.route('/api/bank-accounts/<int:bid>', methods=['PUT'])
@admin_required
def update_bank_account(bid):
    data = request.get_json(silent=True) or {}
    db = get_db()
    cur = db.cursor()
    try:
        account = update_row(cur, 'bank_accounts', bid, pick_fields(data, BANK_ACCOUNT_FIELDS))
        if not account:
            return jsonify({'error': 'Bank account not found'}), 404
        db.commit()
        return jsonify(account)
    except Exception as e:
        db.rollback()
        logger.error(f"Error updating bank account {bid}: {e}", exc_info=True)
        return jsonify({'error': str(e)}), 500
    finally:
        db.close()


@app.route('/api/bank-accounts/<int:bid>', methods=['DELETE'])
@admin_required
def delete_bank_account(bid):
    db = get_db()
    cur = db.cursor()
    try:
        cur.execute("DELETE FROM bank_accounts WHERE id=%s", (bid,))
        db.commit()
        return jsonify({'message': 'Deleted'})
    except Exception as e:
        db.rollback()
        logger.error(f"Error deleting bank account {bid}: {e}", exc_info=True)
        return jsonify({'error': str(e)}), 500
    finally:
        db.close()


# =====================================================
# QUOTE CALCULATION
# =====================================================

@app.route('/api/quotes/calculate', methods=['POST'])
@login_required
def calculate_quote():
    """Price a draft without saving it: calculation, HTML block and text breakdown."""
    payload = request.get_json(silent=True)
    try:
        draft = draft_from_payload(payload)
        calc = engine.calculate_quote(draft)
        return jsonify({
            'success': True,
            'calculation': calc.to_dict(),
            'html': render_quote_html(calc),
            'text': render_text_breakdown(calc),
        })
    except QuoteEngineError as e:
        logger.info(f"Quote rejected: {e}")
        return error_response(str(e), 400)
    except Exception as e:
        logger.error(f"Unexpected calculation error: {e}", exc_info=True)
        return error_response(f'Server error: {str(e)}', 500)


# =====================================================
# QUOTES
# =====================================================

@app.route('/api/quotes', methods=['GET'])
@login_required
def list_quotes():
    status = request.args.get('status')
    search = (request.args.get('search') or '').strip()
    query = "SELECT * FROM quotes WHERE TRUE"
    params = []
    if status and status != 'all':
        query += " AND status=%s"
        params.append(status)
    if search:
        query += " AND (client_name ILIKE %s OR reference_number ILIKE %s)"
        params.extend([f"%{search}%", f"%{search}%"])
    query += " ORDER BY created_at DESC"

    db = get_db()
    cur = db.cursor()
    try:
        cur.execute(query, params)
        return jsonify(rows_to_dicts(cur, cur.fetchall()))
    except Exception as e:
        logger.error(f"Error listing quotes: {e}", exc_info=True)
        return jsonify({'error': str(e)}), 500
    finally:
        db.close()


@app.route('/api/quotes/<int:qid>', methods=['GET'])
@login_required
def get_quote(qid):
    db = get_db()
    cur = db.cursor()
    try:
        quote = fetch_by_id(cur, 'quotes', qid)
        if not quote:
            return jsonify({'error': 'Quote not found'}), 404
        quote['hotel_options'] = hotel_options_from_record(quote)
        return jsonify(quote)
    except Exception as e:
        logger.error(f"Error fetching quote {qid}: {e}", exc_info=True)
        return jsonify({'error': str(e)}), 500
    finally:
        db.close()


@app.route('/api/quotes', methods=['POST'])
@login_required
def create_quote():
    payload = request.get_json(silent=True) or {}
    db = get_db()
    cur = db.cursor()
    try:
        draft = draft_from_payload(payload)
        if not draft.customer_name:
            raise QuoteValidationError('Please fill in all required fields')
        calc = engine.calculate_quote(draft)

        values = build_quote_record(calc, generate_reference_number())
        values['created_by'] = session.get('user_id')
        quote = insert_row(cur, 'quotes', values)
        db.commit()

        logger.info(f"Quote {quote['reference_number']} created for {draft.customer_name}")
        return jsonify({
            'quote': quote,
            'calculation': calc.to_dict(),
            'text': render_text_breakdown(calc),
        }), 201

    except QuoteEngineError as e:
        return error_response(str(e), 400)
    except Exception as e:
        db.rollback()
        logger.error(f"Error creating quote: {e}", exc_info=True)
        return jsonify({'error': str(e)}), 500
    finally:
        db.close()


@app.route('/api/quotes/<int:qid>', methods=['PUT'])
@login_required
def update_quote(qid):
    """Edit a quote: recalculated from the submitted draft, never patched in place."""
    payload = request.get_json(silent=True) or {}
    db = get_db()
    cur = db.cursor()
    try:
        existing = fetch_by_id(cur, 'quotes', qid)
        if not existing:
            return jsonify({'error': 'Quote not found'}), 404

        draft = draft_from_payload(payload)
        if not draft.customer_name:
            raise QuoteValidationError('Please fill in all required fields')
        calc = engine.calculate_quote(draft)
        status = payload.get('status') or existing.get('status') or 'draft'
        if status not in QUOTE_STATUSES:
            raise QuoteValidationError(f"Invalid status: {status}")

        values = build_quote_record(calc, existing['reference_number'], status)
        values.pop('reference_number')
        quote = update_row(cur, 'quotes', qid, values)
        db.commit()

        logger.info(f"Quote {existing['reference_number']} updated")
        return jsonify({
            'quote': quote,
            'calculation': calc.to_dict(),
            'text': render_text_breakdown(calc),
        })

    except QuoteEngineError as e:
        return error_response(str(e), 400)
    except Exception as e:
        db.rollback()
        logger.error(f"Error updating quote {qid}: {e}", exc_info=True)
        return jsonify({'error': str(e)}), 500
    finally:
        db.close()


@app.route('/api/quotes/<int:qid>/status', methods=['PATCH'])
@login_required
def update_quote_status(qid):
    data = request.get_json(silent=True) or {}
    status = data.get('status')
    if status not in QUOTE_STATUSES:
        return error_response(f"Status must be one of: {', '.join(QUOTE_STATUSES)}", 400)

    db = get_db()
    cur = db.cursor()
    try:
        quote = update_row(cur, 'quotes', qid, {'status': status})
        if not quote:
            return jsonify({'error': 'Quote not found'}), 404
        db.commit()
        logger.info(f"Quote {quote['reference_number']} status -> {status}")
        return jsonify(quote)
    except Exception as e:
        db.rollback()
        logger.error(f"Error updating quote status {qid}: {e}", exc_info=True)
        return jsonify({'error': str(e)}), 500
    finally:
        db.close()


@app.route('/api/quotes/<int:qid>', methods=['DELETE'])
@login_required
def delete_quote(qid):
    db = get_db()
    cur = db.cursor()
    try:
        cur.execute("DELETE FROM quotes WHERE id=%s", (qid,))
        db.commit()
        return jsonify({'message': 'Deleted'})
    except Exception as e:
        db.rollback()
        logger.error(f"Error deleting quote {qid}: {e}", exc_info=True)
        return jsonify({'error': str(e)}), 500
    finally:
        db.close()


# =====================================================
# QUOTE DOCUMENTS (print page, PDF)
# =====================================================

def _recalculate(quote):
    """Calculation of a saved quote, or None for quotes without structured data."""
    if not quote.get('quote_data'):
        return None
    return engine.calculate_quote(draft_from_quote_data(quote['quote_data']))


@app.route('/api/quotes/<int:qid>/print', methods=['GET'])
@login_required
def print_quote(qid):
    db = get_db()
    cur = db.cursor()
    try:
        quote = fetch_by_id(cur, 'quotes', qid)
        if not quote:
            return jsonify({'error': 'Quote not found'}), 404

        calc = _recalculate(quote)
        if calc is not None:
            quote_html = render_quote_html(calc)
        elif quote.get('formatted_quote') and not str(quote['formatted_quote']).lstrip().startswith('{'):
            quote_html = quote['formatted_quote']
        else:
            return error_response('Quote has no printable document', 404)

        page = render_print_page(quote_html, quote['reference_number'])
        return page, 200, {'Content-Type': 'text/html; charset=utf-8'}

    except QuoteEngineError as e:
        return error_response(str(e), 400)
    except Exception as e:
        logger.error(f"Error rendering print page for quote {qid}: {e}", exc_info=True)
        return jsonify({'error': str(e)}), 500
    finally:
        db.close()


@app.route('/api/quotes/<int:qid>/pdf', methods=['GET'])
@login_required
def quote_pdf(qid):
    db = get_db()
    cur = db.cursor()
    try:
        quote = fetch_by_id(cur, 'quotes', qid)
        if not quote:
            return jsonify({'error': 'Quote not found'}), 404

        calc = _recalculate(quote)
        if calc is None:
            return error_response('Quote has no pricing data; edit and save it first', 400)

        pdf = render_quote_pdf(calc, quote['reference_number'])
        return send_file(
            BytesIO(pdf),
            mimetype='application/pdf',
            as_attachment=True,
            download_name=f"Quote_{quote['reference_number']}.pdf",
        )

    except QuoteEngineError as e:
        return error_response(str(e), 400)
    except Exception as e:
        logger.error(f"Error rendering PDF for quote {qid}: {e}", exc_info=True)
        return jsonify({'error': str(e)}), 500
    finally:
        db.close()


# =====================================================
# INVOICES
# =====================================================

@app.route('/api/quotes/<int:qid>/invoice', methods=['POST'])
@login_required
def create_invoice(qid):
    data = request.get_json(silent=True) or {}
    db = get_db()
    cur = db.cursor()
    try:
        quote = fetch_by_id(cur, 'quotes', qid)
        if not quote:
            return jsonify({'error': 'Quote not found'}), 404

        bank_account = None
        if data.get('bank_account_id'):
            bank_account = fetch_by_id(cur, 'bank_accounts', data['bank_account_id'])

        invoice = build_invoice(
            quote,
            hotel_option_id=data.get('hotel_option_id'),
            bank_account=bank_account,
            lead_pax_name=data.get('lead_pax_name') or '',
            distribution=parse_distribution(data.get('distribution')),
        )

        insert_row(cur, 'invoices', {
            'quote_id': qid,
            'invoice_number': invoice.invoice_number,
            'amount': invoice.total_usd,
            'issue_date': invoice.issue_date,
            'due_date': invoice.issue_date + timedelta(days=INVOICE_DUE_DAYS),
            'payment_terms': f"Payment due within {INVOICE_DUE_DAYS} days",
            'status': 'pending',
        })
        db.commit()

        pdf = render_invoice_pdf(invoice)
        return send_file(
            BytesIO(pdf),
            mimetype='application/pdf',
            as_attachment=True,
            download_name=f"Invoice_{quote['reference_number']}_{invoice.invoice_number}.pdf",
        )

    except QuoteEngineError as e:
        db.rollback()
        return error_response(str(e), 400)
    except Exception as e:
        db.rollback()
        logger.error(f"Error creating invoice for quote {qid}: {e}", exc_info=True)
        return jsonify({'error': str(e)}), 500
    finally:
        db.close()


@app.route('/api/quotes/<int:qid>/invoices', methods=['GET'])
@login_required
def list_invoices(qid):
    db = get_db()
    cur = db.cursor()
    try:
        cur.execute("SELECT * FROM invoices WHERE quote_id=%s ORDER BY created_at DESC", (qid,))
        return jsonify(rows_to_dicts(cur, cur.fetchall()))
    except Exception as e:
        logger.error(f"Error listing invoices for quote {qid}: {e}", exc_info=True)
        return jsonify({'error': str(e)}), 500
    finally:
        db.close()


# =====================================================
# ITINERARY
# =====================================================

ITINERARY_FIELDS = ('tour_date', 'start_time', 'end_time', 'tour_id', 'notes')


def _itinerary_items(cur, qid):
    cur.execute(
        """SELECT i.*, t.name AS tour_name, t.transfer_included
           FROM itineraries i LEFT JOIN tours t ON t.id = i.tour_id
           WHERE i.quote_id=%s ORDER BY i.tour_date, i.start_time""",
        (qid,)
    )
    return rows_to_dicts(cur, cur.fetchall())


@app.route('/api/quotes/<int:qid>/itinerary', methods=['GET'])
@login_required
def list_itinerary(qid):
    db = get_db()
    cur = db.cursor()
    try:
        return jsonify(_itinerary_items(cur, qid))
    except Exception as e:
        logger.error(f"Error listing itinerary for quote {qid}: {e}", exc_info=True)
        return jsonify({'error': str(e)}), 500
    finally:
        db.close()


@app.route('/api/quotes/<int:qid>/itinerary', methods=['POST'])
@login_required
def add_itinerary_item(qid):
    data = request.get_json(silent=True) or {}
    db = get_db()
    cur = db.cursor()
    try:
        require_fields(data, ('tour_date', 'tour_id'))
        values = pick_fields(data, ITINERARY_FIELDS)
        values['quote_id'] = qid
        item = insert_row(cur, 'itineraries', values)
        db.commit()
        return jsonify(item), 201
    except QuoteValidationError as e:
        return error_response(str(e), 400)
    except Exception as e:
        db.rollback()
        logger.error(f"Error adding itinerary item to quote {qid}: {e}", exc_info=True)
        return jsonify({'error': str(e)}), 500
    finally:
        db.close()


@app.route('/api/itinerary/<int:item_id>', methods=['PUT'])
@login_required
def update_itinerary_item(item_id):
    data = request.get_json(silent=True) or {}
    db = get_db()
    cur = db.cursor()
    try:
        item = update_row(cur, 'itineraries', item_id, pick_fields(data, ITINERARY_FIELDS))
        if not item:
            return jsonify({'error': 'Itinerary item not found'}), 404
        db.commit()
        return jsonify(item)
    except Exception as e:
        db.rollback()
        logger.error(f"Error updating itinerary item {item_id}: {e}", exc_info=True)
        return jsonify({'error': str(e)}), 500
    finally:
        db.close()


@app.route('/api/itinerary/<int:item_id>', methods=['DELETE'])
@login_required
def delete_itinerary_item(item_id):
    db = get_db()
    cur = db.cursor()
    try:
        cur.execute("DELETE FROM itineraries WHERE id=%s", (item_id,))
        db.commit()
        return jsonify({'message': 'Deleted'})
    except Exception as e:
        db.rollback()
        logger.error(f"Error deleting itinerary item {item_id}: {e}", exc_info=True)
        return jsonify({'error': str(e)}), 500
    finally:
        db.close()


# =====================================================
# VOUCHERS
# =====================================================

@app.route('/api/quotes/<int:qid>/voucher', methods=['POST'])
@login_required
def create_voucher(qid):
    data = request.get_json(silent=True) or {}
    db = get_db()
    cur = db.cursor()
    try:
        quote = fetch_by_id(cur, 'quotes', qid)
        if not quote:
            return jsonify({'error': 'Quote not found'}), 404

        items = _itinerary_items(cur, qid)
        tours_by_id = {
            str(i['tour_id']): {'name': i.get('tour_name'), 'transfer_included': i.get('transfer_included')}
            for i in items if i.get('tour_name')
        }

        options = hotel_options_from_record(quote)
        wanted = str(data.get('hotel_option_id') or '')
        hotel = next((h for h in options if str(h.get('id')) == wanted), options[0] if options else {})

        model = build_voucher_model(
            quote,
            confirmation_number=data.get('confirmation_number') or '',
            tourism_dirham_paid=bool(data.get('tourism_dirham_paid')),
            itinerary_items=items,
            tours_by_id=tours_by_id,
            hotel_name=hotel.get('name') or '',
            lead_pax_name=data.get('lead_pax_name') or '',
        )
        pdf = render_voucher_pdf(model)
        return send_file(
            BytesIO(pdf),
            mimetype='application/pdf',
            as_attachment=True,
            download_name=f"Voucher_{quote['reference_number']}.pdf",
        )

    except QuoteEngineError as e:
        return error_response(str(e), 400)
    except Exception as e:
        logger.error(f"Error creating voucher for quote {qid}: {e}", exc_info=True)
        return jsonify({'error': str(e)}), 500
    finally:
        db.close()


# =====================================================
# SHAREABLE ITINERARY LINKS
# =====================================================

@app.route('/api/quotes/<int:qid>/share', methods=['POST'])
@login_required
def share_itinerary(qid):
    db = get_db()
    cur = db.cursor()
    try:
        quote = fetch_by_id(cur, 'quotes', qid)
        if not quote:
            return jsonify({'error': 'Quote not found'}), 404

        token = f"itinerary_{secrets.token_urlsafe(16)}"
        link = insert_row(cur, 'shared_itineraries', {
            'share_token': token,
            'quote_id': qid,
            'customer_name': quote.get('client_name'),
            'expires_at': datetime.now(timezone.utc) + timedelta(days=SHARE_LINK_DAYS),
            'is_active': True,
        })
        db.commit()

        link['url'] = f"{request.host_url.rstrip('/')}/shared-itinerary/{token}"
        logger.info(f"Share link created for quote {quote['reference_number']}")
        return jsonify(link), 201

    except Exception as e:
        db.rollback()
        logger.error(f"Error sharing itinerary for quote {qid}: {e}", exc_info=True)
        return jsonify({'error': str(e)}), 500
    finally:
        db.close()


@app.route('/api/shared-itinerary/<token>', methods=['GET'])
def get_shared_itinerary(token):
    """Public: no login, valid while active and unexpired."""
    db = get_db()
    cur = db.cursor()
    try:
        cur.execute(
            """SELECT * FROM shared_itineraries
               WHERE share_token=%s AND is_active=TRUE AND expires_at > NOW()""",
            (token,)
        )
        link = row_to_dict(cur, cur.fetchone())
        if not link:
            return jsonify({'error': 'Itinerary link not found or expired'}), 404

        quote = fetch_by_id(cur, 'quotes', link['quote_id'])
        if not quote:
            return jsonify({'error': 'Itinerary link not found or expired'}), 404

        return jsonify({
            'quote': {k: quote.get(k) for k in (
                'reference_number', 'client_name', 'travel_dates_from', 'travel_dates_to',
                'adults', 'cwb', 'cnb', 'infants',
            )},
            'items': _itinerary_items(cur, link['quote_id']),
            'expires_at': link['expires_at'],
        })

    except Exception as e:
        logger.error(f"Error loading shared itinerary {token}: {e}", exc_info=True)
        return jsonify({'error': str(e)}), 500
    finally:
        db.close()


@app.route('/api/shared-itinerary/<token>', methods=['DELETE'])
@login_required
def deactivate_shared_itinerary(token):
    db = get_db()
    cur = db.cursor()
    try:
        cur.execute("UPDATE shared_itineraries SET is_active=FALSE WHERE share_token=%s", (token,))
        db.commit()
        return jsonify({'message': 'Deactivated'})
    except Exception as e:
        db.rollback()
        logger.error(f"Error deactivating shared itinerary {token}: {e}", exc_info=True)
        return jsonify({'error': str(e)}), 500
    finally:
        db.close()


# =====================================================
# BOOKINGS & ANALYTICS
# =====================================================

@app.route('/api/bookings', methods=['GET'])
@login_required
def list_bookings():
    db = get_db()
    cur = db.cursor()
    try:
        cur.execute("SELECT * FROM quotes WHERE status='confirmed' ORDER BY travel_dates_from")
        return jsonify(rows_to_dicts(cur, cur.fetchall()))
    except Exception as e:
        logger.error(f"Error listing bookings: {e}", exc_info=True)
        return jsonify({'error': str(e)}), 500
    finally:
        db.close()


@app.route('/api/analytics/summary', methods=['GET'])
@login_required
def analytics_summary():
    db = get_db()
    cur = db.cursor()
    try:
        cur.execute(
            """SELECT status, COUNT(*) AS quotes, COALESCE(SUM(total_amount), 0) AS amount
               FROM quotes GROUP BY status"""
        )
        by_status = {s: {'quotes': 0, 'amount': 0.0} for s in QUOTE_STATUSES}
        for row in rows_to_dicts(cur, cur.fetchall()):
            bucket = by_status.setdefault(row['status'] or 'draft', {'quotes': 0, 'amount': 0.0})
            bucket['quotes'] += int(row['quotes'])
            bucket['amount'] += float(row['amount'])

        total_quotes = sum(s['quotes'] for s in by_status.values())
        confirmed = by_status.get('confirmed', {'quotes': 0, 'amount': 0.0})
        return jsonify({
            'totalQuotes': total_quotes,
            'byStatus': by_status,
            'revenue': confirmed['amount'],
            'conversionRate': round(confirmed['quotes'] / total_quotes * 100, 1) if total_quotes else 0.0,
        })

    except Exception as e:
        logger.error(f"Error building analytics summary: {e}", exc_info=True)
        return jsonify({'error': str(e)}), 500
    finally:
        db.close()


# =====================================================
# ENTRY POINT
# =====================================================

if __name__ == '__main__':
    port = int(os.environ.get('PORT', 5000))
    debug = os.environ.get('FLASK_DEBUG', '').lower() in ('1', 'true', 'yes')
    logger.info(f"Starting Quote Desk API on port {port}")
    app.run(host='0.0.0.0', port=port, debug=debug)
