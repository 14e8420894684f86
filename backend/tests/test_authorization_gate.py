import pytest
from ledger.errors import Forbidden, ScopeForbidden, ScopeMissing
from ledger.services.scope import ScopeRequirement


def test_read_grant_does_not_imply_create(world, services):
    gate = services.gate
    assert gate.admit(world.reader.id, 'bill', 'read', branch_selector=world.a1.id).branch_id == world.a1.id
    with pytest.raises(Forbidden) as exc:
        gate.admit(world.reader.id, 'bill', 'create', branch_selector=world.a1.id)
    assert exc.value.code == 403
    assert exc.value.context['resource'] == 'bill'
    assert exc.value.context['action'] == 'create'


def test_scope_failure_propagates_unchanged(world, services):
    # Scope is resolved before the privilege check
    with pytest.raises(ScopeForbidden):
        services.gate.admit(world.clerk.id, 'bill', 'read', branch_selector=world.a2.id)
    with pytest.raises(ScopeMissing):
        services.gate.admit(world.clerk.id, 'bill', 'read')


def test_organization_scoped_admission(world, services):
    scope = services.gate.admit(world.owner.id, 'branch', 'read', ScopeRequirement.ORGANIZATION)
    assert scope.organization_id == world.org_a.id and scope.branch_id is None


def test_admit_any(world, services):
    gate = services.gate
    pairs = [('bill', 'create'), ('bill', 'read')]
    assert gate.admit_any(world.reader.id, pairs, branch_selector=world.a1.id).branch_id == world.a1.id
    with pytest.raises(Forbidden) as exc:
        gate.admit_any(world.reader.id, [('bill', 'create'), ('bill', 'delete')], branch_selector=world.a1.id)
    assert exc.value.context['any_of'] == ['bill.create', 'bill.delete']


def test_admit_all_names_first_missing_pair(world, services):
    with pytest.raises(Forbidden) as exc:
        services.gate.admit_all(world.reader.id, [('bill', 'read'), ('bill', 'update'), ('bill', 'delete')],
                                branch_selector=world.a1.id)
    assert (exc.value.resource, exc.value.action) == ('bill', 'update')


def test_wildcard_holder_still_needs_the_pair(world, services, grant):
    grant(world.reader, 'all', 'all')
    # Admitted into a branch it is not linked to, but bill.create is still missing
    with pytest.raises(Forbidden):
        services.gate.admit(world.reader.id, 'bill', 'create', branch_selector=world.a2.id)
    assert services.gate.admit(world.reader.id, 'bill', 'read', branch_selector=world.a2.id).branch_id == world.a2.id
