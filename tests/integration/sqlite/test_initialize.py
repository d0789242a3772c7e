"""Schema bootstrap against a SQLite file."""
from unittest.mock import patch

import bcrypt
import pytest
from lecturedb import BackendError, DuplicateEntryError, QueryAdapter, initialize
from lecturedb.exceptions import ErrorKind
from lecturedb.schema import DEFAULT_SECTIONS, create_database


def test_creates_schema_and_seed(portal_pool):
    db = QueryAdapter(portal_pool)

    tables, _ = db.execute("SELECT name FROM sqlite_master WHERE type = 'table' AND name NOT LIKE 'sqlite_%' ORDER BY name")
    assert [t['name'] for t in tables] == ['sections', 'user_sections', 'users', 'videos']

    triggers, _ = db.execute("SELECT name FROM sqlite_master WHERE type = 'trigger' ORDER BY name")
    assert [t['name'] for t in triggers] == ['trg_users_updated_at', 'trg_videos_updated_at']

    sections, _ = db.execute('SELECT name, description FROM sections ORDER BY id')
    assert [(s['name'], s['description']) for s in sections] == list(DEFAULT_SECTIONS)


def test_admin_created_with_bcrypt_hash(portal_pool):
    rows, _ = QueryAdapter(portal_pool).execute(
        'SELECT name, role, password_hash FROM users WHERE email = ?', ['admin@learningportal.com'])
    assert len(rows) == 1
    admin = rows[0]
    assert admin['name'] == 'Admin User'
    assert admin['role'] == 'admin'
    assert admin['password_hash'].startswith('$2b$10$')
    assert bcrypt.checkpw(b'Admin@123', admin['password_hash'].encode())


def test_idempotent(portal_pool):
    """Running bootstrap again changes nothing"""
    initialize(portal_pool)
    initialize(portal_pool)

    db = QueryAdapter(portal_pool)
    users, _ = db.execute('SELECT COUNT(*) AS n FROM users')
    sections, _ = db.execute('SELECT COUNT(*) AS n FROM sections')
    assert users[0]['n'] == 1
    assert sections[0]['n'] == 3


def test_sections_not_reseeded_when_present(sqlite_pool):
    db = QueryAdapter(sqlite_pool)
    initialize(sqlite_pool, sections=[('Mathematics', 'Maths')])
    db.execute('DELETE FROM sections WHERE name = ?', ['Mathematics'])
    db.execute('INSERT INTO sections (name) VALUES (?)', ['Custom'])
    initialize(sqlite_pool)
    rows, _ = db.execute('SELECT name FROM sections')
    assert rows == [{'name': 'Custom'}]


def test_unique_email_enforced(portal_pool):
    with pytest.raises(DuplicateEntryError):
        QueryAdapter(portal_pool).execute(
            'INSERT INTO users (name, email, password_hash) VALUES (?, ?, ?)',
            ['Other', 'admin@learningportal.com', 'x'])


def test_user_section_assignment_unique(portal_pool):
    db = QueryAdapter(portal_pool)
    _, meta = db.execute('INSERT INTO users (name, email, password_hash) VALUES (?, ?, ?)',
                         ['Student', 'student@example.com', 'x'])
    db.execute('INSERT INTO user_sections (user_id, section_id) VALUES (?, ?)', [meta['insert_id'], 1])
    with pytest.raises(DuplicateEntryError):
        db.execute('INSERT INTO user_sections (user_id, section_id) VALUES (?, ?)', [meta['insert_id'], 1])


def test_video_listing_with_sections(portal_pool):
    """The portal's listing query shape runs through translation"""
    db = QueryAdapter(portal_pool)
    _, meta = db.execute('INSERT INTO videos (title, section_id, s3_key, uploaded_by) VALUES (?, ?, ?, ?)',
                         ['Intro', 2, 'videos/1.mp4', 1])
    assert meta['insert_id'] == 1
    rows, _ = db.execute("""
    SELECT v.id, v.title, s.name AS section_name, u.name AS uploaded_by_name
    FROM videos v
    INNER JOIN sections s ON v.section_id = s.id
    INNER JOIN users u ON v.uploaded_by = u.id
    WHERE v.section_id = ?
    """, [2])
    assert rows == [{'id': 1, 'title': 'Intro', 'section_name': 'Chemistry',
                     'uploaded_by_name': 'Admin User'}]


class TestCreateDatabase:

    def test_permission_denied_swallowed(self, sqlite_pool):
        denied = BackendError('CREATE DATABASE permission denied', backend_code=262,
                              kind=ErrorKind.PERMISSION_DENIED)
        with patch.object(type(sqlite_pool.strategy), 'create_database', side_effect=denied):
            assert create_database(sqlite_pool) is False
            initialize(sqlite_pool)
        rows, _ = QueryAdapter(sqlite_pool).execute('SELECT COUNT(*) AS n FROM sections')
        assert rows[0]['n'] == 3

    def test_other_failure_is_fatal(self, sqlite_pool):
        failure = BackendError('Login failed for user', backend_code=18456)
        with patch.object(type(sqlite_pool.strategy), 'create_database', side_effect=failure):
            with pytest.raises(BackendError, match='Login failed'):
                initialize(sqlite_pool)
