SCHEMA_VERSION = 2

SCHEMA_SQL = """
-- Schema version tracking
CREATE TABLE IF NOT EXISTS schema_version (
    version   INTEGER NOT NULL,
    applied_at REAL NOT NULL
);

-- Rounds: one time-boxed selling window of a raffle
CREATE TABLE IF NOT EXISTS rounds (
    round_id           TEXT PRIMARY KEY,
    raffle_id          TEXT NOT NULL,
    round_number       INTEGER NOT NULL,
    start_time         REAL NOT NULL,
    end_time           REAL NOT NULL,
    status             TEXT NOT NULL DEFAULT 'active'
                       CHECK (status IN ('active', 'ended', 'drawn')),
    total_tickets_sold INTEGER NOT NULL DEFAULT 0,
    total_prize_pool   REAL NOT NULL DEFAULT 0.0,
    winner_address     TEXT,
    created_at         REAL NOT NULL,
    updated_at         REAL NOT NULL,
    UNIQUE (raffle_id, round_number)
);

CREATE INDEX IF NOT EXISTS idx_rounds_status ON rounds(status);
CREATE UNIQUE INDEX IF NOT EXISTS idx_rounds_raffle_active
    ON rounds(raffle_id) WHERE status = 'active';

-- Entries: ticket purchases and prize claims, keyed by wallet
CREATE TABLE IF NOT EXISTS entries (
    id             INTEGER PRIMARY KEY AUTOINCREMENT,
    wallet_address TEXT NOT NULL,
    raffle_id      TEXT NOT NULL,
    round_id       TEXT NOT NULL,
    entry_type     TEXT NOT NULL DEFAULT 'raffle_entry'
                   CHECK (entry_type IN ('raffle_entry', 'prize_claim', 'refund')),
    ticket_count   INTEGER NOT NULL DEFAULT 0,
    amount         REAL NOT NULL DEFAULT 0.0,
    tx_hash        TEXT NOT NULL DEFAULT '',
    status         TEXT NOT NULL DEFAULT 'pending'
                   CHECK (status IN ('pending', 'confirmed', 'failed')),
    created_at     REAL NOT NULL,
    updated_at     REAL NOT NULL,
    FOREIGN KEY (round_id) REFERENCES rounds(round_id)
);

CREATE INDEX IF NOT EXISTS idx_entries_wallet ON entries(wallet_address, created_at);
CREATE INDEX IF NOT EXISTS idx_entries_round_status ON entries(round_id, status);
CREATE INDEX IF NOT EXISTS idx_entries_status ON entries(status);

-- Commitments: sealed draw payloads, revealed once the round is drawn
CREATE TABLE IF NOT EXISTS commitments (
    round_id          TEXT PRIMARY KEY,
    commit_hash       TEXT NOT NULL,
    nonce             TEXT NOT NULL,
    secret            TEXT NOT NULL,
    payload_timestamp INTEGER NOT NULL,
    created_at        REAL NOT NULL,
    revealed_at       REAL,
    FOREIGN KEY (round_id) REFERENCES rounds(round_id)
);

-- Winners: exactly one per drawn round
CREATE TABLE IF NOT EXISTS winners (
    id             INTEGER PRIMARY KEY AUTOINCREMENT,
    round_id       TEXT NOT NULL UNIQUE,
    raffle_id      TEXT NOT NULL,
    wallet_address TEXT NOT NULL,
    prize_amount   REAL NOT NULL,
    total_slots    INTEGER NOT NULL,
    winning_slot   INTEGER NOT NULL,
    commit_hash    TEXT NOT NULL,
    reveal_json    TEXT NOT NULL,
    drawn_at       REAL NOT NULL,
    FOREIGN KEY (round_id) REFERENCES rounds(round_id)
);

CREATE INDEX IF NOT EXISTS idx_winners_drawn ON winners(drawn_at);
"""
