"""
Database operations for launch records, the step audit trail and driver leases
"""

import json
import logging
import sqlite3
import time
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from fractions import Fraction
from typing import Dict, List, Optional

from launchpad.models import (
    BinDistribution,
    LaunchFailure,
    LaunchRecord,
    LaunchRequest,
    LaunchState,
    PoolTierConfig,
    StepAttempt,
    TokenAllocation,
)

# Configure SQLite to handle datetime properly for Python 3.12+
sqlite3.register_adapter(datetime, lambda dt: dt.isoformat())
sqlite3.register_converter("timestamp", lambda b: datetime.fromisoformat(b.decode()))

TERMINAL_STATES = tuple(s.value for s in LaunchState if s.is_terminal)

LAUNCH_COLUMNS = (
    'launch_id', 'token_name', 'token_symbol', 'creator_address', 'tier', 'initial_price',
    'description', 'website', 'logo', 'logo_content_type', 'tier_config',
    'total_supply', 'decimals', 'creator_share', 'total_supply_base_units', 'creator_amount',
    'liquidity_amount', 'state', 'failed_at', 'error', 'metadata_locator', 'metadata_hash',
    'mint_salt', 'predicted_mint_address', 'mint_address', 'mint_receipt', 'active_bin',
    'distribution', 'pool_address', 'pool_receipt', 'liquidity_receipt', 'protection_receipt',
    'pending_step', 'cancel_requested', 'created_at', 'updated_at', 'completed_at',
)


def _text(value) -> Optional[str]:
    return None if value is None else str(value)


def _int(value) -> Optional[int]:
    return None if value is None else int(value)


class LaunchDatabase:
    """Handles all database operations for the launch system"""

    def __init__(self, db_path: str = 'launches.db'):
        """Initialize database connection"""
        self.db_path = db_path
        self.logger = logging.getLogger('launchpad')
        self._setup_database()

    @contextmanager
    def _connect(self):
        conn = sqlite3.connect(self.db_path, detect_types=sqlite3.PARSE_DECLTYPES | sqlite3.PARSE_COLNAMES)
        conn.row_factory = sqlite3.Row
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def _setup_database(self):
        """Setup SQLite database for tracking launches"""
        with self._connect() as conn:
            # Big integers are kept as TEXT - base units overflow SQLite's signed 64-bit INTEGER
            conn.execute('''
                CREATE TABLE IF NOT EXISTS launches (
                    launch_id TEXT PRIMARY KEY,
                    token_name TEXT,
                    token_symbol TEXT,
                    creator_address TEXT,
                    tier TEXT,
                    initial_price TEXT,
                    description TEXT,
                    website TEXT,
                    logo BLOB,
                    logo_content_type TEXT,
                    tier_config TEXT,
                    total_supply TEXT,
                    decimals INTEGER,
                    creator_share TEXT,
                    total_supply_base_units TEXT,
                    creator_amount TEXT,
                    liquidity_amount TEXT,
                    state TEXT DEFAULT 'created',
                    failed_at TEXT,
                    error TEXT,
                    metadata_locator TEXT,
                    metadata_hash TEXT,
                    mint_salt TEXT,
                    predicted_mint_address TEXT,
                    mint_address TEXT,
                    mint_receipt TEXT,
                    active_bin INTEGER,
                    distribution TEXT,
                    pool_address TEXT,
                    pool_receipt TEXT,
                    liquidity_receipt TEXT,
                    protection_receipt TEXT,
                    pending_step TEXT,
                    cancel_requested BOOLEAN DEFAULT FALSE,
                    created_at TIMESTAMP,
                    updated_at TIMESTAMP,
                    completed_at TIMESTAMP
                )
            ''')

            # Every collaborator call, including failed ones
            conn.execute('''
                CREATE TABLE IF NOT EXISTS launch_attempts (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    launch_id TEXT,
                    step TEXT,
                    attempt INTEGER,
                    outcome TEXT,
                    error TEXT,
                    created_at TIMESTAMP
                )
            ''')

            conn.execute('''
                CREATE TABLE IF NOT EXISTS launch_transitions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    launch_id TEXT,
                    from_state TEXT,
                    to_state TEXT,
                    detail TEXT,
                    created_at TIMESTAMP
                )
            ''')

            # One driver per launch
            conn.execute('''
                CREATE TABLE IF NOT EXISTS launch_leases (
                    launch_id TEXT PRIMARY KEY,
                    owner TEXT,
                    expires_at REAL
                )
            ''')

            conn.execute('''
                CREATE INDEX IF NOT EXISTS idx_launch_state
                ON launches(state, created_at)
            ''')
            conn.execute('''
                CREATE INDEX IF NOT EXISTS idx_attempts_launch
                ON launch_attempts(launch_id, step)
            ''')

        self.logger.debug(f"Launch database ready at {self.db_path}")

    # Launch records

    def save_launch(self, record: LaunchRecord) -> None:
        """Insert or update a launch record"""
        record.updated_at = datetime.now()
        if record.created_at is None:
            record.created_at = record.updated_at

        request = record.request
        allocation = record.allocation
        values = (
            record.launch_id, request.token_name, request.token_symbol, request.creator_address,
            request.tier, str(request.initial_price), request.description, request.website,
            sqlite3.Binary(request.logo), request.logo_content_type,
            json.dumps(record.tier_config.to_dict()),
            _text(allocation.total_supply) if allocation else None,
            allocation.decimals if allocation else None,
            _text(allocation.creator_share) if allocation else None,
            _text(allocation.total_supply_base_units) if allocation else None,
            _text(allocation.creator_amount) if allocation else None,
            _text(allocation.liquidity_amount) if allocation else None,
            record.state.value,
            record.failed_at.value if record.failed_at else None,
            json.dumps(record.error.__dict__) if record.error else None,
            record.metadata_locator, record.metadata_hash, record.mint_salt,
            record.predicted_mint_address, record.mint_address, record.mint_receipt,
            record.active_bin,
            json.dumps(record.distribution.to_dict()) if record.distribution else None,
            record.pool_address, record.pool_receipt, record.liquidity_receipt,
            record.protection_receipt, record.pending_step, record.cancel_requested,
            record.created_at, record.updated_at, record.completed_at,
        )

        placeholders = ', '.join('?' for _ in LAUNCH_COLUMNS)
        updates = ', '.join(f"{col} = excluded.{col}" for col in LAUNCH_COLUMNS
                            if col not in ('launch_id', 'cancel_requested'))
        with self._connect() as conn:
            # cancel_requested is sticky: a driver saving its copy must not clear it
            conn.execute(f'''
                INSERT INTO launches ({', '.join(LAUNCH_COLUMNS)}) VALUES ({placeholders})
                ON CONFLICT(launch_id) DO UPDATE SET {updates},
                cancel_requested = MAX(launches.cancel_requested, excluded.cancel_requested)
            ''', values)

    def request_cancel(self, launch_id: str) -> None:
        with self._connect() as conn:
            conn.execute("UPDATE launches SET cancel_requested = 1 WHERE launch_id = ?", (launch_id,))

    def load_launch(self, launch_id: str) -> Optional[LaunchRecord]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM launches WHERE launch_id = ?", (launch_id,)).fetchone()
        return self._row_to_record(row) if row else None

    def list_launches(self, state: Optional[LaunchState] = None, limit: int = 50) -> List[LaunchRecord]:
        """Most recent launches first"""
        with self._connect() as conn:
            if state is None:
                rows = conn.execute(
                    "SELECT * FROM launches ORDER BY created_at DESC LIMIT ?", (limit,)).fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM launches WHERE state = ? ORDER BY created_at DESC LIMIT ?",
                    (LaunchState(state).value, limit)).fetchall()
        return [self._row_to_record(row) for row in rows]

    def list_interrupted(self, now: Optional[float] = None) -> List[str]:
        """Non-terminal launches that no driver currently holds"""
        now = time.time() if now is None else now
        placeholders = ', '.join('?' for _ in TERMINAL_STATES)
        with self._connect() as conn:
            rows = conn.execute(f'''
                SELECT l.launch_id FROM launches l
                LEFT JOIN launch_leases k ON k.launch_id = l.launch_id
                WHERE l.state NOT IN ({placeholders})
                AND (k.launch_id IS NULL OR k.expires_at < ?)
                ORDER BY l.created_at
            ''', (*TERMINAL_STATES, now)).fetchall()
        return [row['launch_id'] for row in rows]

    def _row_to_record(self, row: sqlite3.Row) -> LaunchRecord:
        request = LaunchRequest(
            token_name=row['token_name'],
            token_symbol=row['token_symbol'],
            creator_address=row['creator_address'],
            tier=row['tier'],
            logo=bytes(row['logo']) if row['logo'] is not None else b'',
            logo_content_type=row['logo_content_type'],
            initial_price=Decimal(row['initial_price']),
            description=row['description'],
            website=row['website'],
        )

        allocation = None
        if row['total_supply_base_units'] is not None:
            allocation = TokenAllocation(
                total_supply=int(row['total_supply']),
                decimals=row['decimals'],
                creator_share=Fraction(row['creator_share']),
                total_supply_base_units=int(row['total_supply_base_units']),
                creator_amount=int(row['creator_amount']),
                liquidity_amount=int(row['liquidity_amount']),
            )

        return LaunchRecord(
            launch_id=row['launch_id'],
            request=request,
            tier_config=PoolTierConfig.from_dict(json.loads(row['tier_config'])),
            state=LaunchState(row['state']),
            allocation=allocation,
            created_at=row['created_at'],
            updated_at=row['updated_at'],
            completed_at=row['completed_at'],
            failed_at=LaunchState(row['failed_at']) if row['failed_at'] else None,
            error=LaunchFailure(**json.loads(row['error'])) if row['error'] else None,
            metadata_locator=row['metadata_locator'],
            metadata_hash=row['metadata_hash'],
            mint_salt=row['mint_salt'],
            predicted_mint_address=row['predicted_mint_address'],
            mint_address=row['mint_address'],
            mint_receipt=row['mint_receipt'],
            active_bin=_int(row['active_bin']),
            distribution=BinDistribution.from_dict(json.loads(row['distribution'])) if row['distribution'] else None,
            pool_address=row['pool_address'],
            pool_receipt=row['pool_receipt'],
            liquidity_receipt=row['liquidity_receipt'],
            protection_receipt=row['protection_receipt'],
            pending_step=row['pending_step'],
            cancel_requested=bool(row['cancel_requested']),
        )

    # Audit trail

    def record_attempt(self, launch_id: str, step: str, attempt: int, outcome: str,
                       error: Optional[str] = None) -> None:
        with self._connect() as conn:
            conn.execute('''
                INSERT INTO launch_attempts (launch_id, step, attempt, outcome, error, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
            ''', (launch_id, step, attempt, outcome, error, datetime.now()))

    def get_attempts(self, launch_id: str, step: Optional[str] = None) -> List[StepAttempt]:
        query = "SELECT * FROM launch_attempts WHERE launch_id = ?"
        params = [launch_id]
        if step is not None:
            query += " AND step = ?"
            params.append(step)
        query += " ORDER BY id"

        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [
            StepAttempt(
                launch_id=row['launch_id'],
                step=row['step'],
                attempt=row['attempt'],
                outcome=row['outcome'],
                error=row['error'],
                created_at=row['created_at'],
            )
            for row in rows
        ]

    def record_transition(self, launch_id: str, from_state: Optional[LaunchState], to_state: LaunchState,
                          detail: Optional[str] = None) -> None:
        with self._connect() as conn:
            conn.execute('''
                INSERT INTO launch_transitions (launch_id, from_state, to_state, detail, created_at)
                VALUES (?, ?, ?, ?, ?)
            ''', (launch_id, from_state.value if from_state else None, to_state.value, detail, datetime.now()))

    def get_transitions(self, launch_id: str) -> List[Dict]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT from_state, to_state, detail, created_at FROM launch_transitions "
                "WHERE launch_id = ? ORDER BY id", (launch_id,)).fetchall()
        return [dict(row) for row in rows]

    # Leases

    def acquire_lease(self, launch_id: str, owner: str, ttl: int, now: Optional[float] = None) -> bool:
        """Take or renew the driver lease; False when another owner holds a live one"""
        now = time.time() if now is None else now
        with self._connect() as conn:
            conn.execute('''
                INSERT INTO launch_leases (launch_id, owner, expires_at) VALUES (?, ?, ?)
                ON CONFLICT(launch_id) DO UPDATE SET owner = excluded.owner, expires_at = excluded.expires_at
                WHERE launch_leases.owner = excluded.owner OR launch_leases.expires_at < ?
            ''', (launch_id, owner, now + ttl, now))
            row = conn.execute("SELECT owner FROM launch_leases WHERE launch_id = ?", (launch_id,)).fetchone()
        return row is not None and row['owner'] == owner

    def release_lease(self, launch_id: str, owner: str) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM launch_leases WHERE launch_id = ? AND owner = ?", (launch_id, owner))

    def lease_owner(self, launch_id: str, now: Optional[float] = None) -> Optional[str]:
        now = time.time() if now is None else now
        with self._connect() as conn:
            row = conn.execute(
                "SELECT owner FROM launch_leases WHERE launch_id = ? AND expires_at >= ?",
                (launch_id, now)).fetchone()
        return row['owner'] if row else None

    # Stats

    def get_launch_stats(self) -> Dict:
        """Launch counts by state, failures by step and attempt outcomes"""
        with self._connect() as conn:
            by_state = {row['state']: row['n'] for row in conn.execute(
                "SELECT state, COUNT(*) AS n FROM launches GROUP BY state")}
            failed_at = {row['failed_at']: row['n'] for row in conn.execute(
                "SELECT failed_at, COUNT(*) AS n FROM launches WHERE state = 'failed' GROUP BY failed_at")}
            attempts = {(row['step'], row['outcome']): row['n'] for row in conn.execute(
                "SELECT step, outcome, COUNT(*) AS n FROM launch_attempts GROUP BY step, outcome")}
            last_24h = conn.execute(
                "SELECT COUNT(*) FROM launches WHERE created_at > ?",
                (datetime.fromtimestamp(time.time() - 86400),)).fetchone()[0]

        return {
            'total_launches': sum(by_state.values()),
            'launches_24h': last_24h,
            'by_state': by_state,
            'failed_at': failed_at,
            'attempts': attempts,
        }
