#!/usr/bin/env python3
"""
Create the Quote Desk tables.
Run once (safe to re-run): python create_schema.py
"""
import os
import sys
import psycopg2
from dotenv import load_dotenv

load_dotenv()

DB_CONFIG = {
    'host': os.environ.get('DB_HOST', 'localhost'),
    'port': int(os.environ.get('DB_PORT', 5432)),
    'database': os.environ.get('DB_NAME', 'quote_desk'),
    'user': os.environ.get('DB_USER', 'postgres'),
    'password': os.environ.get('DB_PASS', ''),
}

TABLES = [
    ('users', """
CREATE TABLE IF NOT EXISTS users (
    id SERIAL PRIMARY KEY,
    email VARCHAR(200) NOT NULL UNIQUE,
    password_hash VARCHAR(255) NOT NULL,
    name VARCHAR(200),
    role VARCHAR(20) NOT NULL DEFAULT 'sales'
        CHECK (role IN ('admin', 'sales', 'booking')),
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);
"""),
    ('hotels', """
CREATE TABLE IF NOT EXISTS hotels (
    id SERIAL PRIMARY KEY,
    name VARCHAR(200) NOT NULL,
    location VARCHAR(200),
    description TEXT,
    star_rating INTEGER CHECK (star_rating BETWEEN 1 AND 7),
    base_rate NUMERIC(10, 2),
    extra_bed_rate NUMERIC(10, 2) DEFAULT 0,
    amenities TEXT[],
    images TEXT[],
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);
"""),
    ('hotel_rates', """
CREATE TABLE IF NOT EXISTS hotel_rates (
    id SERIAL PRIMARY KEY,
    hotel_id INTEGER NOT NULL REFERENCES hotels(id) ON DELETE CASCADE,
    date DATE NOT NULL,
    rate NUMERIC(10, 2) NOT NULL,
    inventory INTEGER,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    UNIQUE (hotel_id, date)
);
CREATE INDEX IF NOT EXISTS idx_hotel_rates_hotel_date ON hotel_rates(hotel_id, date);
"""),
    ('tours', """
CREATE TABLE IF NOT EXISTS tours (
    id SERIAL PRIMARY KEY,
    name VARCHAR(200) NOT NULL,
    description TEXT,
    type VARCHAR(20) NOT NULL DEFAULT 'group'
        CHECK (type IN ('group', 'private')),
    duration VARCHAR(50),
    cost_per_person NUMERIC(10, 2) NOT NULL DEFAULT 0,
    private_transfer_cost NUMERIC(10, 2),
    transfer_included BOOLEAN DEFAULT FALSE,
    highlights TEXT[],
    images TEXT[],
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);
"""),
    ('inclusions', """
CREATE TABLE IF NOT EXISTS inclusions (
    id SERIAL PRIMARY KEY,
    name VARCHAR(200) NOT NULL,
    type VARCHAR(20) NOT NULL DEFAULT 'other'
        CHECK (type IN ('visa', 'transfer', 'insurance', 'other')),
    cost NUMERIC(10, 2) DEFAULT 0,
    description TEXT,
    is_optional BOOLEAN DEFAULT TRUE,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);
"""),
    ('bank_accounts', """
CREATE TABLE IF NOT EXISTS bank_accounts (
    id SERIAL PRIMARY KEY,
    bank_name VARCHAR(200) NOT NULL,
    account_name VARCHAR(200) NOT NULL,
    account_number VARCHAR(100) NOT NULL,
    iban VARCHAR(100),
    swift_code VARCHAR(50),
    branch_name VARCHAR(200) NOT NULL,
    branch_country VARCHAR(100) NOT NULL,
    bank_address TEXT,
    currency VARCHAR(10) NOT NULL DEFAULT 'USD',
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);
"""),
    ('quotes', """
CREATE TABLE IF NOT EXISTS quotes (
    id SERIAL PRIMARY KEY,
    reference_number VARCHAR(50) NOT NULL UNIQUE,
    client_name VARCHAR(200) NOT NULL,
    client_email VARCHAR(200),
    travel_dates_from DATE NOT NULL,
    travel_dates_to DATE NOT NULL,
    adults INTEGER NOT NULL DEFAULT 1,
    cwb INTEGER NOT NULL DEFAULT 0,
    cnb INTEGER NOT NULL DEFAULT 0,
    infants INTEGER NOT NULL DEFAULT 0,
    selected_hotel JSONB,
    total_amount NUMERIC(12, 2) NOT NULL DEFAULT 0,
    currency VARCHAR(10) NOT NULL DEFAULT 'AED',
    status VARCHAR(20) NOT NULL DEFAULT 'draft'
        CHECK (status IN ('draft', 'sent', 'confirmed', 'cancelled')),
    quote_data JSONB,
    formatted_quote TEXT,
    notes TEXT,
    created_by INTEGER REFERENCES users(id) ON DELETE SET NULL,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);
CREATE INDEX IF NOT EXISTS idx_quotes_status ON quotes(status);
CREATE INDEX IF NOT EXISTS idx_quotes_created_at ON quotes(created_at);
"""),
    ('invoices', """
CREATE TABLE IF NOT EXISTS invoices (
    id SERIAL PRIMARY KEY,
    quote_id INTEGER NOT NULL REFERENCES quotes(id) ON DELETE CASCADE,
    invoice_number VARCHAR(100) NOT NULL,
    amount NUMERIC(12, 2) NOT NULL,
    issue_date DATE NOT NULL,
    due_date DATE,
    payment_terms TEXT,
    status VARCHAR(20) NOT NULL DEFAULT 'pending'
        CHECK (status IN ('pending', 'paid', 'cancelled')),
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);
"""),
    ('itineraries', """
CREATE TABLE IF NOT EXISTS itineraries (
    id SERIAL PRIMARY KEY,
    quote_id INTEGER NOT NULL REFERENCES quotes(id) ON DELETE CASCADE,
    tour_id INTEGER REFERENCES tours(id) ON DELETE SET NULL,
    tour_date DATE NOT NULL,
    start_time TIME,
    end_time TIME,
    notes TEXT,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);
CREATE INDEX IF NOT EXISTS idx_itineraries_quote ON itineraries(quote_id);
"""),
    ('shared_itineraries', """
CREATE TABLE IF NOT EXISTS shared_itineraries (
    id SERIAL PRIMARY KEY,
    share_token VARCHAR(128) NOT NULL UNIQUE,
    quote_id INTEGER NOT NULL REFERENCES quotes(id) ON DELETE CASCADE,
    customer_name VARCHAR(200),
    expires_at TIMESTAMPTZ NOT NULL,
    is_active BOOLEAN NOT NULL DEFAULT TRUE,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);
"""),
]


def get_connection():
    database_url = os.environ.get('DATABASE_URL')
    if database_url:
        return psycopg2.connect(database_url)
    return psycopg2.connect(**DB_CONFIG)


def create_schema(conn):
    """Run every CREATE ... IF NOT EXISTS in dependency order. Returns table names."""
    cursor = conn.cursor()
    created = []
    for table, sql in TABLES:
        cursor.execute(sql)
        created.append(table)
        print(f"  ✅ {table}")
    cursor.close()
    return created


def main():
    print("\n" + "=" * 70)
    print("CREATING QUOTE DESK SCHEMA")
    print("=" * 70)
    conn = None
    try:
        conn = get_connection()
        print("\n✅ Connected to database")
        tables = create_schema(conn)
        conn.commit()
        print(f"\n✅ {len(tables)} tables ready")
        return 0
    except Exception as e:
        if conn is not None:
            conn.rollback()
        print(f"\n❌ Error: {e}")
        return 1
    finally:
        if conn is not None:
            conn.close()


if __name__ == '__main__':
    sys.exit(main())
