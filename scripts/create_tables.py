#!/usr/bin/env python3
"""Create the webhook intake tables for Keys Pay."""

import os
import psycopg2
from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL")

SQL = """
-- 1. webhook_events_v2
CREATE TABLE IF NOT EXISTS webhook_events_v2 (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    provider VARCHAR(50) NOT NULL,
    event_id VARCHAR(255) NOT NULL,
    event_type VARCHAR(100) NOT NULL,
    signature TEXT,
    raw_payload JSONB NOT NULL,
    processed BOOLEAN NOT NULL DEFAULT FALSE,
    processed_at TIMESTAMPTZ,
    error_message TEXT,
    retry_count INTEGER NOT NULL DEFAULT 0,
    last_retry_at TIMESTAMPTZ,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE UNIQUE INDEX IF NOT EXISTS idx_webhook_events_v2_provider_event
    ON webhook_events_v2(provider, event_id);
CREATE INDEX IF NOT EXISTS idx_webhook_events_v2_retry
    ON webhook_events_v2(processed, retry_count, last_retry_at);

-- 2. cards
CREATE TABLE IF NOT EXISTS cards (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    user_id UUID,
    provider VARCHAR(50) NOT NULL,
    provider_card_id VARCHAR(255) NOT NULL,
    card_status VARCHAR(30) NOT NULL DEFAULT 'pending',
    spending_limits JSONB NOT NULL DEFAULT '{}'::jsonb,
    card_controls JSONB NOT NULL DEFAULT '{}'::jsonb,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    UNIQUE(provider, provider_card_id)
);

-- 3. card_transactions
CREATE TABLE IF NOT EXISTS card_transactions (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    card_id UUID NOT NULL REFERENCES cards(id) ON DELETE CASCADE,
    user_id UUID,
    provider VARCHAR(50) NOT NULL,
    provider_transaction_id VARCHAR(255) NOT NULL,
    status VARCHAR(30) NOT NULL,
    authorization_status VARCHAR(50),
    amount NUMERIC(20, 8),
    currency VARCHAR(10),
    merchant JSONB,
    chargeback_amount NUMERIC(20, 8),
    chargeback_reason TEXT,
    cleared_at TIMESTAMPTZ,
    raw_payload JSONB,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    UNIQUE(provider, provider_transaction_id)
);
CREATE INDEX IF NOT EXISTS idx_card_transactions_card_id ON card_transactions(card_id);

-- 4. crypto_orders
CREATE TABLE IF NOT EXISTS crypto_orders (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    user_id UUID,
    provider VARCHAR(50) NOT NULL,
    provider_order_id VARCHAR(255) NOT NULL,
    status VARCHAR(30) NOT NULL DEFAULT 'pending',
    crypto_amount NUMERIC(30, 12),
    exchange_rate NUMERIC(30, 12),
    tx_hash VARCHAR(255),
    settled_at TIMESTAMPTZ,
    webhook_data JSONB,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    UNIQUE(provider, provider_order_id)
);

-- 5. bank_transfers
CREATE TABLE IF NOT EXISTS bank_transfers (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    organization_id UUID,
    provider VARCHAR(50) NOT NULL,
    provider_ref VARCHAR(255) NOT NULL,
    direction VARCHAR(10) NOT NULL DEFAULT 'outbound',
    currency VARCHAR(10) NOT NULL,
    amount NUMERIC(20, 4) NOT NULL,
    fees_amount NUMERIC(20, 4),
    status VARCHAR(30) NOT NULL DEFAULT 'pending',
    beneficiary_json JSONB,
    expected_completion_date TIMESTAMPTZ,
    completed_at TIMESTAMPTZ,
    metadata JSONB,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    UNIQUE(provider, provider_ref)
);

-- 6. ledger_accounts
CREATE TABLE IF NOT EXISTS ledger_accounts (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    organization_id UUID NOT NULL,
    account_code VARCHAR(50) NOT NULL,
    account_type VARCHAR(20) NOT NULL,
    currency VARCHAR(10) NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    UNIQUE(organization_id, account_code)
);

-- 7. ledger_entries
CREATE TABLE IF NOT EXISTS ledger_entries (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    organization_id UUID NOT NULL,
    account_id UUID NOT NULL REFERENCES ledger_accounts(id),
    transaction_id UUID,
    debit_amount NUMERIC(20, 4),
    credit_amount NUMERIC(20, 4),
    fees_amount NUMERIC(20, 4),
    currency VARCHAR(10) NOT NULL,
    description TEXT,
    reference VARCHAR(255),
    provider VARCHAR(50),
    provider_transaction_id VARCHAR(255),
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS idx_ledger_entries_account_id ON ledger_entries(account_id);

-- 8. ledger_reconciliation_items
CREATE TABLE IF NOT EXISTS ledger_reconciliation_items (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    provider VARCHAR(50) NOT NULL,
    source_table VARCHAR(100) NOT NULL,
    source_id UUID,
    reference VARCHAR(255),
    organization_id UUID,
    currency VARCHAR(10),
    amount NUMERIC(20, 4),
    fees_amount NUMERIC(20, 4),
    status VARCHAR(30) NOT NULL DEFAULT 'pending_reconciliation',
    reason VARCHAR(50) NOT NULL,
    error_message TEXT,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    resolved_at TIMESTAMPTZ
);
CREATE INDEX IF NOT EXISTS idx_ledger_reconciliation_items_status ON ledger_reconciliation_items(status);

-- 9. circle_transactions
CREATE TABLE IF NOT EXISTS circle_transactions (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    circle_transaction_id VARCHAR(255) UNIQUE NOT NULL,
    wallet_id VARCHAR(255),
    status VARCHAR(30) NOT NULL DEFAULT 'pending',
    completed_at TIMESTAMPTZ,
    webhook_received_at TIMESTAMPTZ,
    error_details JSONB,
    circle_response JSONB,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

-- 10. super_admins
CREATE TABLE IF NOT EXISTS super_admins (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    email VARCHAR(255) UNIQUE NOT NULL,
    password_hash VARCHAR(255) NOT NULL,
    name VARCHAR(100),
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

-- 11. observability_metric_snapshots
CREATE TABLE IF NOT EXISTS observability_metric_snapshots (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    source VARCHAR(100) NOT NULL,
    request_id VARCHAR(255),
    counters JSONB NOT NULL DEFAULT '{}'::jsonb,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
"""


def main():
    print("Connecting to database...")
    conn = psycopg2.connect(DATABASE_URL)
    conn.autocommit = True
    cur = conn.cursor()

    print("Creating tables...")
    cur.execute(SQL)

    # Verify
    cur.execute("SELECT table_name FROM information_schema.tables WHERE table_schema = 'public' ORDER BY table_name;")
    tables = cur.fetchall()
    print(f"\nTables present: {[t[0] for t in tables]}")

    cur.execute("SELECT indexname FROM pg_indexes WHERE tablename = 'webhook_events_v2';")
    indexes = cur.fetchall()
    print(f"webhook_events_v2 indexes: {[i[0] for i in indexes]}")

    cur.close()
    conn.close()
    print("\nDone!")


if __name__ == "__main__":
    main()
