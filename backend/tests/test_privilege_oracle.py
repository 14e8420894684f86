from datetime import datetime, timedelta, timezone
from sqlalchemy import select
from ledger import get_db
from ledger.models.authz import Privilege


def test_exact_pair_matching(world, services):
    oracle = services.oracle
    assert oracle.is_granted(world.clerk.id, 'bill', 'create')
    assert not oracle.is_granted(world.clerk.id, 'bill', 'approve')
    assert not oracle.is_granted(world.clerk.id, 'item', 'create')
    # Resource and action are matched as a pair, never independently
    assert not oracle.is_granted(world.reader.id, 'item', 'read')


def test_missing_subject_or_pair_is_false(world, services):
    oracle = services.oracle
    assert oracle.is_granted(None, 'bill', 'read') is False
    assert oracle.is_granted(999999, 'bill', 'read') is False
    assert oracle.is_granted(world.clerk.id, 'nope', 'nope') is False
    assert oracle.is_granted(world.clerk.id, '', 'read') is False


def test_expired_grant_is_never_effective(world, services, grant):
    past = datetime.now(timezone.utc) - timedelta(minutes=5)
    grant(world.reader, 'bill', 'create', expires_at=past)
    assert not services.oracle.is_granted(world.reader.id, 'bill', 'create')


def test_future_expiry_is_effective(world, services, grant):
    future = datetime.now(timezone.utc) + timedelta(days=1)
    grant(world.reader, 'bill', 'update', expires_at=future)
    assert services.oracle.is_granted(world.reader.id, 'bill', 'update')


def test_inactive_grant_is_not_effective(world, services, grant):
    grant(world.reader, 'bill', 'delete', is_active=False)
    assert not services.oracle.is_granted(world.reader.id, 'bill', 'delete')


def test_deactivated_privilege_disables_existing_grants(world, services):
    session = get_db()
    p = session.execute(select(Privilege).where(Privilege.name == 'bill.read')).scalar_one()
    services.privileges.deactivate_privilege(p.id)
    assert not services.oracle.is_granted(world.reader.id, 'bill', 'read')
    assert not services.oracle.is_granted(world.clerk.id, 'bill', 'read')


def test_any_and_all(world, services):
    oracle = services.oracle
    assert oracle.is_granted_any(world.reader.id, [('bill', 'create'), ('bill', 'read')])
    assert not oracle.is_granted_any(world.reader.id, [('bill', 'create'), ('bill', 'delete')])
    assert not oracle.is_granted_any(world.reader.id, [])
    assert oracle.is_granted_all(world.clerk.id, [('bill', 'read'), ('bill', 'update')])
    assert not oracle.is_granted_all(world.reader.id, [('bill', 'read'), ('bill', 'update')])
    assert oracle.first_missing(world.reader.id, [('bill', 'read'), ('bill', 'update')]) == ('bill', 'update')


def test_wildcard_does_not_satisfy_ordinary_lookups(world, services, grant):
    grant(world.reader, 'all', 'all')
    assert services.oracle.is_granted(world.reader.id, 'all', 'all')
    assert not services.oracle.is_granted(world.reader.id, 'bill', 'create')


def test_injected_clock_controls_expiry(world, grant):
    from ledger.services.privileges import PrivilegeOracle
    expires = datetime(2030, 1, 1, tzinfo=timezone.utc)
    grant(world.reader, 'item', 'read', expires_at=expires)
    before = PrivilegeOracle(get_db, clock=lambda: expires - timedelta(seconds=1))
    after = PrivilegeOracle(get_db, clock=lambda: expires + timedelta(seconds=1))
    assert before.is_granted(world.reader.id, 'item', 'read')
    assert not after.is_granted(world.reader.id, 'item', 'read')


def test_effective_privileges_lists_only_effective_grants(world, services, grant):
    grant(world.reader, 'item', 'read', expires_at=datetime.now(timezone.utc) - timedelta(days=1))
    names = [g.privilege.name for g in services.oracle.effective_privileges(world.reader.id)]
    assert names == ['bill.read']
