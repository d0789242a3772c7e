"""
Idempotent schema bootstrap for the lecture portal.

`initialize()` may run on every process start:
- creates the database through the server's master database when missing
  (permission denied is logged and ignored)
- creates each table and trigger guarded by an existence check
- creates the default admin user when no user has its email
- seeds the default sections when the sections table is empty
"""
import logging
from collections.abc import Sequence

import bcrypt
from lecturedb.connection import Pool
from lecturedb.exceptions import BackendError, ErrorKind
from lecturedb.query import QueryAdapter

__all__ = ['DEFAULT_SECTIONS', 'hash_password', 'initialize']

logger = logging.getLogger(__name__)

BCRYPT_ROUNDS = 10

DEFAULT_SECTIONS = (
    ('Physics', 'Physics lectures and materials'),
    ('Chemistry', 'Chemistry lectures and materials'),
    ('Biology', 'Biology lectures and materials'),
    )


def hash_password(password: str, rounds: int = BCRYPT_ROUNDS) -> str:
    """Return the bcrypt hash of a password as text."""
    return bcrypt.hashpw(password.encode('utf-8'), bcrypt.gensalt(rounds=rounds)).decode('ascii')


def create_database(pool: Pool) -> bool:
    """Create the configured database if absent.

    Returns False when the dialect has nothing to create or the login lacks
    permission to create databases.
    """
    try:
        return pool.strategy.create_database(pool.config)
    except BackendError as err:
        if err.kind is not ErrorKind.PERMISSION_DENIED:
            raise
        logger.warning(f'Cannot create database {pool.config.database!r}, '
                       f'continuing with the existing one: {err.message}')
        return False


def create_schema(pool: Pool) -> None:
    """Create tables and triggers that do not exist yet."""
    for name, ddl in pool.strategy.schema_objects():
        pool.execute_script([ddl])
        logger.debug(f'Schema object {name} checked/created')
    logger.info('Database tables checked/created successfully')


def ensure_admin(db: QueryAdapter, email: str, password: str, name: str) -> bool:
    """Create the admin user unless one with `email` exists. Returns True if created."""
    existing, _ = db.execute('SELECT id FROM users WHERE email = ?', [email])
    if existing:
        return False
    db.execute('INSERT INTO users (name, email, password_hash, role) VALUES (?, ?, ?, ?)',
               [name, email, hash_password(password), 'admin'])
    logger.info(f'Default admin user created: {email}')
    return True


def seed_sections(db: QueryAdapter, sections: Sequence[tuple[str, str]] = DEFAULT_SECTIONS) -> int:
    """Insert the default sections when the table is empty. Returns rows inserted."""
    rows, _ = db.execute('SELECT COUNT(*) AS total FROM sections')
    if rows[0]['total']:
        return 0
    for name, description in sections:
        db.execute('INSERT INTO sections (name, description) VALUES (?, ?)', [name, description])
    logger.info(f'Default sections created: {len(sections)}')
    return len(sections)


def initialize(pool: Pool, admin_email: str = 'admin@learningportal.com',
               admin_password: str = 'Admin@123', admin_name: str = 'Admin User',
               sections: Sequence[tuple[str, str]] = DEFAULT_SECTIONS) -> None:
    """Bootstrap database, schema and seed data. Safe to call repeatedly.

    Any failure other than a refused CREATE DATABASE propagates.
    """
    create_database(pool)
    pool.connect()
    create_schema(pool)
    db = QueryAdapter(pool)
    ensure_admin(db, admin_email, admin_password, admin_name)
    seed_sections(db, sections)
