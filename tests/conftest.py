"""Shared fixtures.

Unit tests run against the fakes in fakes.py. Tests marked ``db`` run against
a real CockroachDB/PostgreSQL database named by LEDGER_TEST_DB_URL and are
skipped when it is not set. CI provisions a PostgreSQL service for them (see
.github/workflows/tests.yml) and sets LEDGER_REQUIRE_DB, which turns a missing
LEDGER_TEST_DB_URL into a usage error instead of a silent skip.
"""
import os

import pytest
import pytest_asyncio

from fakes import FakeConnection, FakePool

TEST_DB_URL = os.environ.get('LEDGER_TEST_DB_URL')
REQUIRE_DB = bool(os.environ.get('LEDGER_REQUIRE_DB'))

@pytest.fixture
def fake_conn():
    return FakeConnection()

@pytest.fixture
def fake_pool(fake_conn):
    return FakePool(fake_conn)

def pytest_configure(config):
    config.addinivalue_line(
        "markers", "db: needs a live database named by LEDGER_TEST_DB_URL"
    )
    if REQUIRE_DB and not TEST_DB_URL:
        raise pytest.UsageError("LEDGER_REQUIRE_DB is set but LEDGER_TEST_DB_URL is not")

def pytest_collection_modifyitems(config, items):
    if TEST_DB_URL:
        return
    skip_db = pytest.mark.skip(reason="LEDGER_TEST_DB_URL not set")
    for item in items:
        if 'db' in item.keywords:
            item.add_marker(skip_db)

@pytest_asyncio.fixture
async def db_pool():
    """Create a database pool on the test database and empty every table."""
    from database import init_db, close as close_db

    pool = await init_db(TEST_DB_URL)
    async with pool.acquire() as conn:
        await conn.execute(
            '''
            TRUNCATE data_access_grants, earnings, withdrawals, invoices,
                     ledger_entries, privacy_audit_log, privacy_settings, accounts CASCADE
            '''
        )
    yield pool
    await close_db()
