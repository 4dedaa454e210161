"""Tests for privacy modes and access decisions."""

import uuid
from datetime import datetime, timezone

import asyncpg
import pytest

from ledger.exceptions import NotFoundError, PermissionDeniedError
from privacy import PrivacyGate, anonymize, anonymize_batch, apply_decision, decide_access
from fakes import sql_of

OWNER = uuid.UUID('00000000-0000-0000-0000-00000000000a')
OTHER = uuid.UUID('00000000-0000-0000-0000-00000000000b')

RECORD = {
    'wallet_id': 'w-123',
    'address': 't1' + 'a' * 33,
    'wallet_type': 'merchant',
    'transaction_count': 42,
    'total_volume': 12.5,
    'retention_score': 0.8
}

def setting(mode, owner=OWNER):
    return {
        'resource_id': 'wallet-1',
        'owner_account_id': owner,
        'mode': mode,
        'updated_at': datetime.now(timezone.utc),
        'updated_by': owner
    }

@pytest.mark.parametrize("mode,is_owner,has_grant,allowed,level,requires_payment", [
    ('private', True, False, True, 'full', False),
    ('public', True, False, True, 'full', False),
    ('monetizable', True, False, True, 'full', False),
    ('private', False, False, False, 'none', False),
    ('private', False, True, False, 'none', False),
    ('public', False, False, True, 'anonymized', False),
    ('monetizable', False, False, False, 'none', True),
    ('monetizable', False, True, True, 'anonymized', False),
])
def test_decide_access(mode, is_owner, has_grant, allowed, level, requires_payment):
    decision = decide_access(mode, is_owner, has_grant)
    assert decision.allowed is allowed
    assert decision.data_level == level
    assert decision.requires_payment is requires_payment
    assert decision.reason

def test_anonymize_strips_identifiers():
    anonymized = anonymize(RECORD)
    assert anonymized['anonymized'] is True
    assert anonymized['record_type'] == 'merchant'
    assert anonymized['metrics']['transaction_count'] == 42
    assert anonymized['metrics']['active_days'] == 0
    assert 'w-123' not in str(anonymized)
    assert RECORD['address'] not in str(anonymized)

def test_anonymize_batch_has_fixed_shape():
    batch = anonymize_batch([RECORD, {'type': 'project'}])
    assert [set(item) for item in batch] == [set(batch[0])] * 2
    assert set(batch[1]['metrics']) == set(batch[0]['metrics'])

def test_apply_decision():
    assert apply_decision(decide_access('private', False), RECORD) is None
    assert apply_decision(decide_access('private', True), RECORD) == RECORD
    assert apply_decision(decide_access('public', False), RECORD)['anonymized']

@pytest.fixture
def gate(fake_pool):
    return PrivacyGate(fake_pool)

@pytest.mark.asyncio
async def test_register_resource_audits(gate, fake_conn):
    fake_conn.fetchrow.return_value = setting('private')
    await gate.register_resource('wallet-1', OWNER)
    audit = fake_conn.execute.call_args
    assert 'INSERT INTO privacy_audit_log' in sql_of(audit)
    assert audit.args[1:] == ('wallet-1', 'private', None, OWNER)

@pytest.mark.asyncio
async def test_register_resource_owned_by_someone_else(gate, fake_conn):
    fake_conn.fetchrow.side_effect = [None, setting('public', owner=OTHER)]
    with pytest.raises(PermissionDeniedError):
        await gate.register_resource('wallet-1', OWNER)

@pytest.mark.asyncio
async def test_set_mode_audits_previous_mode(gate, fake_conn):
    fake_conn.fetchrow.side_effect = [setting('private'), setting('monetizable')]

    updated = await gate.set_mode('wallet-1', 'monetizable', OWNER)

    assert updated['mode'] == 'monetizable'
    assert 'FOR UPDATE' in sql_of(fake_conn.fetchrow.call_args_list[0])
    audit = fake_conn.execute.call_args
    assert audit.args[1:] == ('wallet-1', 'monetizable', 'private', OWNER)

@pytest.mark.asyncio
async def test_set_mode_by_non_owner(gate, fake_conn):
    fake_conn.fetchrow.side_effect = [setting('private')]
    with pytest.raises(PermissionDeniedError):
        await gate.set_mode('wallet-1', 'public', OTHER)
    assert fake_conn.fetchrow.call_count == 1
    fake_conn.execute.assert_not_called()

@pytest.mark.asyncio
async def test_set_mode_rejects_unknown_mode(gate, fake_conn):
    with pytest.raises(ValueError):
        await gate.set_mode('wallet-1', 'secret', OWNER)
    fake_conn.fetchrow.assert_not_called()

@pytest.mark.asyncio
async def test_check_access_unknown_resource(gate, fake_conn):
    with pytest.raises(NotFoundError):
        await gate.check_access('missing', OTHER)

@pytest.mark.asyncio
async def test_check_access_monetizable_with_grant(gate, fake_conn):
    fake_conn.fetchrow.return_value = setting('monetizable')
    fake_conn.fetchval.return_value = True

    decision = await gate.check_access('wallet-1', OTHER)

    assert decision.allowed
    assert decision.data_level == 'anonymized'
    assert fake_conn.fetchval.call_args.args[1:] == (OTHER, 'wallet-1')

@pytest.mark.asyncio
async def test_check_access_private_skips_grant_lookup(gate, fake_conn):
    fake_conn.fetchrow.return_value = setting('private')
    decision = await gate.check_access('wallet-1', OTHER)
    assert not decision.allowed
    fake_conn.fetchval.assert_not_called()

@pytest.mark.asyncio
async def test_read_gates_record(gate, fake_conn):
    fake_conn.fetchrow.return_value = setting('public')
    shaped = await gate.read('wallet-1', OTHER, RECORD)
    assert shaped['anonymized']

@pytest.mark.asyncio
async def test_filter_shared_keeps_order(gate, fake_conn):
    fake_conn.fetch.return_value = [{'resource_id': 'c'}, {'resource_id': 'a'}]
    assert await gate.filter_shared(['a', 'b', 'c']) == ['a', 'c']

@pytest.mark.asyncio
async def test_audit_trail_owner_only(gate, fake_conn):
    fake_conn.fetchrow.return_value = setting('public')
    with pytest.raises(PermissionDeniedError):
        await gate.get_audit_trail('wallet-1', OTHER)

@pytest.mark.db
@pytest.mark.asyncio
async def test_mode_change_is_visible_and_audited(db_pool):
    gate = PrivacyGate(db_pool)
    await gate.register_resource('wallet-live', OWNER)
    assert not (await gate.check_access('wallet-live', OTHER)).allowed

    await gate.set_mode('wallet-live', 'public', OWNER)
    assert (await gate.check_access('wallet-live', OTHER)).allowed

    trail = await gate.get_audit_trail('wallet-live', OWNER)
    assert [(entry['previous_mode'], entry['mode']) for entry in trail] == [
        (None, 'private'),
        ('private', 'public')
    ]

    async with db_pool.acquire() as conn:
        with pytest.raises(asyncpg.exceptions.RaiseError):
            await conn.execute("DELETE FROM privacy_audit_log WHERE resource_id = 'wallet-live'")
