import json
import re
from datetime import timedelta
from decimal import Decimal

import pytest
from werkzeug.security import generate_password_hash

from _helpers import DummyConnection, make_draft, group_tour

import app as app_module
from quote_engine import QuotePricingEngine
from quote_records import build_quote_record


QUOTE_PAYLOAD = {
    'customer_name': 'Test Guest',
    'customer_email': 'guest@example.com',
    'check_in': '2026-03-05',
    'check_out': '2026-03-08',
    'pax': {'adults': 2, 'cwb': 1},
    'occupancy': {'double': True},
    'hotels': [{'id': 'h1', 'name': 'Hotel A', 'rate': 500, 'extra_bed_rate': 150}],
    'tours': [{'id': 't1', 'name': 'Desert Safari', 'cost_per_person': 150}],
    'add_ons': {'include_visa': True},
}


@pytest.fixture
def client():
    app_module.app.config['TESTING'] = True
    with app_module.app.test_client() as client:
        yield client


@pytest.fixture
def db(monkeypatch):
    conn = DummyConnection()
    monkeypatch.setattr(app_module, 'get_db', lambda: conn)
    return conn


def login(client, role='sales', user_id=1):
    with client.session_transaction() as sess:
        sess['user_id'] = user_id
        sess['email'] = f"{role}@example.com"
        sess['role'] = role


def _saved_quote_row():
    calc = QuotePricingEngine().calculate_quote(make_draft(adults=2, cwb=1, tours=[group_tour()]))
    row = build_quote_record(calc, 'QT-20260305-0042')
    row['id'] = 42
    return row


# =====================================================
# AUTH
# =====================================================

def test_calculate_requires_login(client, db):
    response = client.post('/api/quotes/calculate', json=QUOTE_PAYLOAD)
    assert response.status_code == 401
    assert response.get_json()['error'] == 'Authentication required'


def test_admin_routes_reject_sales_users(client, db):
    login(client, role='sales')
    response = client.post('/api/hotels', json={'name': 'Hotel A', 'location': 'Marina'})
    assert response.status_code == 403
    assert db.executed == []


def test_signin_sets_session(client, monkeypatch):
    conn = DummyConnection([
        ('FROM users WHERE email', [{
            'id': 3, 'email': 'agent@example.com', 'name': 'Agent', 'role': 'sales',
            'password_hash': generate_password_hash('secret1'),
        }]),
    ])
    monkeypatch.setattr(app_module, 'get_db', lambda: conn)

    response = client.post('/api/auth/signin', json={'email': 'Agent@Example.com', 'password': 'secret1'})
    assert response.status_code == 200
    assert response.get_json()['user'] == {
        'id': 3, 'email': 'agent@example.com', 'name': 'Agent', 'role': 'sales',
    }
    assert client.get('/api/auth/session').get_json()['user']['id'] == 3

    bad = client.post('/api/auth/signin', json={'email': 'agent@example.com', 'password': 'wrong'})
    assert bad.status_code == 401


def test_signup_rejects_existing_email(client, monkeypatch):
    conn = DummyConnection([('SELECT id FROM users WHERE email', [{'id': 1}])])
    monkeypatch.setattr(app_module, 'get_db', lambda: conn)

    response = client.post('/api/auth/signup', json={'email': 'agent@example.com', 'password': 'secret1'})
    assert response.status_code == 409
    assert conn.committed is False


def test_signup_creates_sales_user(client, db):
    response = client.post('/api/auth/signup', json={
        'email': 'new@example.com', 'password': 'secret1', 'name': 'New Agent',
    })
    assert response.status_code == 201
    assert response.get_json()['user']['role'] == 'sales'
    assert db.committed is True


# =====================================================
# CRUD
# =====================================================

def test_admin_creates_hotel(client, db):
    login(client, role='admin')
    response = client.post('/api/hotels', json={
        'name': 'Hotel A', 'location': 'Marina', 'base_rate': 500, 'unknown': 'dropped',
    })
    assert response.status_code == 201
    body = response.get_json()
    assert body['name'] == 'Hotel A'
    assert 'unknown' not in body
    assert db.committed is True


def test_create_tour_validates_type(client, db):
    login(client, role='admin')
    response = client.post('/api/tours', json={'name': 'Safari', 'cost_per_person': 150, 'type': 'shared'})
    assert response.status_code == 400
    assert 'Tour type must be one of' in response.get_json()['error']


def test_missing_hotel_is_404(client, db):
    login(client)
    assert client.get('/api/hotels/99').status_code == 404


# =====================================================
# QUOTES
# =====================================================

def test_calculate_returns_calculation_html_and_text(client, db):
    login(client)
    response = client.post('/api/quotes/calculate', json=QUOTE_PAYLOAD)
    assert response.status_code == 200
    body = response.get_json()
    assert body['success'] is True
    assert body['calculation']['options'][0]['adult']['double']['aed'] == 1210
    assert 'AED 1210 / USD 332' in body['html']
    assert body['text'].endswith('Total - 1210/673')


def test_calculate_rejects_invalid_draft(client, db):
    login(client)
    payload = dict(QUOTE_PAYLOAD, check_out='2026-03-05')
    response = client.post('/api/quotes/calculate', json=payload)
    assert response.status_code == 400
    assert response.get_json() == {
        'success': False,
        'error': 'Check-out date must be after check-in date',
    }


def test_create_quote_persists_structured_data(client, db):
    login(client, user_id=7)
    response = client.post('/api/quotes', json=QUOTE_PAYLOAD)
    assert response.status_code == 201

    quote = response.get_json()['quote']
    assert quote['reference_number'].startswith('QT-')
    assert quote['created_by'] == 7
    assert quote['total_amount'] == 1210 * 2 + 673
    assert json.loads(quote['quote_data'])['draft']['customer_email'] == 'guest@example.com'
    assert any('INSERT INTO quotes' in sql for sql in db.statements())
    assert db.committed is True


def test_create_quote_requires_customer_name(client, db):
    login(client)
    response = client.post('/api/quotes', json=dict(QUOTE_PAYLOAD, customer_name=''))
    assert response.status_code == 400
    assert response.get_json()['error'] == 'Please fill in all required fields'


def test_update_quote_requires_customer_name(client, monkeypatch):
    conn = DummyConnection([('FROM quotes WHERE id', [_saved_quote_row()])])
    monkeypatch.setattr(app_module, 'get_db', lambda: conn)
    login(client)

    response = client.put('/api/quotes/42', json=dict(QUOTE_PAYLOAD, customer_name=''))
    assert response.status_code == 400
    assert response.get_json()['error'] == 'Please fill in all required fields'
    assert not any('UPDATE quotes' in sql for sql in conn.statements())


def test_update_quote_status_validates_value(client, db):
    login(client)
    response = client.patch('/api/quotes/42/status', json={'status': 'won'})
    assert response.status_code == 400


def test_quote_pdf(client, monkeypatch):
    conn = DummyConnection([('FROM quotes WHERE id', [_saved_quote_row()])])
    monkeypatch.setattr(app_module, 'get_db', lambda: conn)
    login(client)

    response = client.get('/api/quotes/42/pdf')
    assert response.status_code == 200
    assert response.mimetype == 'application/pdf'
    assert response.data.startswith(b'%PDF')


def test_quote_print_page(client, monkeypatch):
    conn = DummyConnection([('FROM quotes WHERE id', [_saved_quote_row()])])
    monkeypatch.setattr(app_module, 'get_db', lambda: conn)
    login(client)

    response = client.get('/api/quotes/42/print')
    assert response.status_code == 200
    page = response.get_data(as_text=True)
    assert 'window.print()' in page
    assert 'QT-20260305-0042' in page


def test_invoice_is_recorded_and_returned_as_pdf(client, monkeypatch):
    conn = DummyConnection([
        ('FROM quotes WHERE id', [_saved_quote_row()]),
        ('FROM bank_accounts WHERE id', [{'id': 1, 'bank_name': 'Emirates NBD', 'account_name': 'Q1'}]),
    ])
    monkeypatch.setattr(app_module, 'get_db', lambda: conn)
    login(client)

    response = client.post('/api/quotes/42/invoice', json={
        'bank_account_id': 1,
        'hotel_option_id': 'h1',
        'lead_pax_name': 'Mohammed Ali',
        'distribution': {'double': {'adults': 2, 'cwb': 1}},
    })
    assert response.status_code == 200
    assert response.data.startswith(b'%PDF')
    assert any('INSERT INTO invoices' in sql for sql in conn.statements())
    assert conn.committed is True


def test_invoice_validation_error_is_400(client, monkeypatch):
    conn = DummyConnection([('FROM quotes WHERE id', [_saved_quote_row()])])
    monkeypatch.setattr(app_module, 'get_db', lambda: conn)
    login(client)

    response = client.post('/api/quotes/42/invoice', json={'hotel_option_id': 'h1', 'lead_pax_name': 'X'})
    assert response.status_code == 400
    assert 'Please fill in all required fields' in response.get_json()['error']


def test_voucher_requires_confirmation_number(client, monkeypatch):
    conn = DummyConnection([('FROM quotes WHERE id', [_saved_quote_row()])])
    monkeypatch.setattr(app_module, 'get_db', lambda: conn)
    login(client)

    response = client.post('/api/quotes/42/voucher', json={})
    assert response.status_code == 400
    assert response.get_json()['error'] == 'Please enter the hotel confirmation number'


# =====================================================
# SHARED ITINERARIES & ANALYTICS
# =====================================================

def test_unknown_share_token_is_404(client, db):
    response = client.get('/api/shared-itinerary/itinerary_nope')
    assert response.status_code == 404


def test_share_link_is_created(client, monkeypatch):
    conn = DummyConnection([('FROM quotes WHERE id', [_saved_quote_row()])])
    monkeypatch.setattr(app_module, 'get_db', lambda: conn)
    login(client)

    response = client.post('/api/quotes/42/share')
    assert response.status_code == 201
    body = response.get_json()
    assert body['share_token'].startswith('itinerary_')
    assert body['url'].endswith(f"/shared-itinerary/{body['share_token']}")


def test_share_link_expiry_is_timezone_aware(client, monkeypatch):
    conn = DummyConnection([('FROM quotes WHERE id', [_saved_quote_row()])])
    monkeypatch.setattr(app_module, 'get_db', lambda: conn)
    login(client)

    assert client.post('/api/quotes/42/share').status_code == 201
    sql, params = next(
        (sql, params) for sql, params in conn.executed
        if 'INSERT INTO shared_itineraries' in sql
    )
    columns = re.search(r'\(([^)]*)\)', sql).group(1).split(', ')
    expires_at = dict(zip(columns, params))['expires_at']
    assert expires_at.tzinfo is not None
    assert expires_at.utcoffset() == timedelta(0)


def test_analytics_summary(client, monkeypatch):
    conn = DummyConnection([
        ('GROUP BY status', [
            {'status': 'draft', 'quotes': 3, 'amount': Decimal('4500')},
            {'status': 'confirmed', 'quotes': 1, 'amount': Decimal('5000.50')},
        ]),
    ])
    monkeypatch.setattr(app_module, 'get_db', lambda: conn)
    login(client)

    body = client.get('/api/analytics/summary').get_json()
    assert body['totalQuotes'] == 4
    assert body['revenue'] == 5000.5
    assert body['conversionRate'] == 25.0
    assert body['byStatus']['sent'] == {'quotes': 0, 'amount': 0.0}


def test_analytics_summary_folds_missing_status_into_draft(client, monkeypatch):
    conn = DummyConnection([
        ('GROUP BY status', [
            {'status': None, 'quotes': 2, 'amount': Decimal('1000')},
            {'status': 'draft', 'quotes': 3, 'amount': Decimal('4500')},
        ]),
    ])
    monkeypatch.setattr(app_module, 'get_db', lambda: conn)
    login(client)

    body = client.get('/api/analytics/summary').get_json()
    assert body['byStatus']['draft'] == {'quotes': 5, 'amount': 5500.0}
    assert body['totalQuotes'] == 5
