# mcx/storage/schema.py

SCHEMA = """
CREATE TABLE IF NOT EXISTS expiries (
    symbol TEXT PRIMARY KEY,
    expiry_dates TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS daily_slots (
    symbol TEXT NOT NULL,
    date TEXT NOT NULL,
    position INTEGER NOT NULL CHECK (position IN (1, 2)),
    expiry_date TEXT NOT NULL,
    PRIMARY KEY (symbol, date, position)
);

CREATE TABLE IF NOT EXISTS oi_points (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    symbol TEXT NOT NULL,
    date TEXT NOT NULL,
    position INTEGER NOT NULL,
    expiry_date TEXT NOT NULL,
    value INTEGER NOT NULL,
    timestamp TEXT NOT NULL,
    FOREIGN KEY (symbol, date, position)
        REFERENCES daily_slots (symbol, date, position)
);

CREATE INDEX IF NOT EXISTS idx_oi_points_day
    ON oi_points (symbol, date, position, id);
"""
