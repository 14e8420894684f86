from datetime import datetime, timedelta, timezone
from sqlalchemy import select
from ledger import get_db
from ledger.models.authz import Privilege


def _priv_id(name):
    return get_db().execute(select(Privilege.id).where(Privilege.name == name)).scalar_one()


def test_list_and_get_privileges(client, world, headers):
    h = headers(world.owner)
    resp = client.get('/privileges', headers=h)
    assert resp.status_code == 200
    names = {p['name'] for p in resp.get_json()['data']}
    assert {'bill.create', 'privilege.grant', 'all'} <= names
    pid = _priv_id('bill.read')
    assert client.get(f'/privileges/{pid}', headers=h).get_json()['resource'] == 'bill'
    assert client.get('/privileges/99999', headers=h).status_code == 404


def test_privilege_catalog_requires_privilege(client, world, headers):
    assert client.get('/privileges', headers=headers(world.clerk)).status_code == 403


def test_create_update_and_deactivate(client, world, headers):
    h = headers(world.owner)
    resp = client.post('/privileges', json={'name': 'bill.export', 'resource': 'bill', 'action': 'export'}, headers=h)
    assert resp.status_code == 201
    pid = resp.get_json()['id']
    dup = client.post('/privileges', json={'name': 'bill.export2', 'resource': 'bill', 'action': 'export'}, headers=h)
    assert dup.status_code == 409 and dup.get_json()['error']['kind'] == 'Conflict'

    upd = client.put(f'/privileges/{pid}', json={'description': 'Export bills'}, headers=h)
    assert upd.status_code == 200
    assert upd.get_json()['description'] == 'Export bills' and upd.get_json()['action'] == 'export'

    assert client.delete(f'/privileges/{pid}', headers=h).status_code == 204
    assert get_db().get(Privilege, pid).is_active is False


def test_initialize_is_idempotent(client, world, headers):
    resp = client.post('/privileges/initialize', headers=headers(world.owner))
    assert resp.status_code == 201
    assert resp.get_json()['created'] == []


def test_grant_and_revoke(client, world, headers, services):
    h = headers(world.owner)
    pid = _priv_id('bill.create')
    assert not services.oracle.is_granted(world.reader.id, 'bill', 'create')
    resp = client.post('/privileges/grant', json={'user_id': world.reader.id, 'privilege_id': pid}, headers=h)
    assert resp.status_code == 201, resp.get_json()
    assert resp.get_json()['granted_by'] == world.owner.id
    assert services.oracle.is_granted(world.reader.id, 'bill', 'create')

    holders = client.get(f'/privileges/{pid}/users', headers=h).get_json()['data']
    assert {u['username'] for u in holders} == {'owner', 'clerk', 'reader'}

    grants = client.get(f'/privileges/users/{world.reader.id}', headers=h).get_json()['data']
    assert {g['privilege']['name'] for g in grants} == {'bill.read', 'bill.create'}

    rev = client.post('/privileges/revoke', json={'user_id': world.reader.id, 'privilege_id': pid}, headers=h)
    assert rev.status_code == 200 and rev.get_json()['revoked'] == 1
    assert not services.oracle.is_granted(world.reader.id, 'bill', 'create')

    # Re-granting reactivates the same row
    client.post('/privileges/grant', json={'user_id': world.reader.id, 'privilege_id': pid}, headers=h)
    assert services.oracle.is_granted(world.reader.id, 'bill', 'create')


def test_grant_with_past_expiry_is_not_effective(client, world, headers, services):
    past = (datetime.now(timezone.utc) - timedelta(hours=1)).isoformat()
    resp = client.post('/privileges/grant', json={
        'user_id': world.reader.id, 'privilege_id': _priv_id('bill.delete'), 'expires_at': past,
    }, headers=headers(world.owner))
    assert resp.status_code == 201
    assert not services.oracle.is_granted(world.reader.id, 'bill', 'delete')
    bad = client.post('/privileges/grant', json={
        'user_id': world.reader.id, 'privilege_id': _priv_id('bill.delete'), 'expires_at': 'tomorrow',
    }, headers=headers(world.owner))
    assert bad.status_code == 400


def test_grant_is_confined_to_own_organization(client, world, headers):
    resp = client.post('/privileges/grant', json={'user_id': world.outsider.id, 'privilege_id': _priv_id('bill.delete')},
                       headers=headers(world.owner))
    assert resp.status_code == 404
    assert resp.get_json()['error']['context']['entity'] == 'user'


def test_grant_requires_grant_privilege(client, world, headers):
    resp = client.post('/privileges/grant', json={'user_id': world.reader.id, 'privilege_id': _priv_id('bill.delete')},
                       headers=headers(world.clerk))
    assert resp.status_code == 403
    assert resp.get_json()['error']['context'] == {'resource': 'privilege', 'action': 'grant'}


def test_inactive_privilege_cannot_be_granted(client, world, headers, services):
    pid = _priv_id('item.delete')
    services.privileges.deactivate_privilege(pid)
    resp = client.post('/privileges/grant', json={'user_id': world.reader.id, 'privilege_id': pid}, headers=headers(world.owner))
    assert resp.status_code == 409


def _register_owner(client, name):
    resp = client.post('/auth/register', json={
        'username': name.lower(), 'email': f'{name.lower()}@example.com', 'password': 'secret1', 'organization_name': name,
    })
    assert resp.status_code == 201, resp.get_json()
    return {'Authorization': f"Bearer {resp.get_json()['access_token']}"}, resp.get_json()['user']['id']


def test_registered_owner_cannot_edit_shared_catalog(client, world, headers):
    h, _ = _register_owner(client, 'Evil')
    pid = _priv_id('bill.read')
    resp = client.delete(f'/privileges/{pid}', headers=h)
    assert resp.status_code == 403
    assert resp.get_json()['error']['context'] == {'resource': 'privilege', 'action': 'delete'}
    assert client.put(f'/privileges/{pid}', json={'action': 'nothing'}, headers=h).status_code == 403
    assert client.post('/privileges', json={'name': 'x.y', 'resource': 'x', 'action': 'y'}, headers=h).status_code == 403
    assert client.post('/privileges/initialize', headers=h).status_code == 403

    assert get_db().get(Privilege, pid).is_active is True
    assert client.get('/bills', headers=headers(world.clerk, world.a1)).status_code == 200


def test_catalog_administration_cannot_be_granted(client, world, headers, services):
    h, uid = _register_owner(client, 'Evil')
    resp = client.post('/privileges/grant', json={'user_id': uid, 'privilege_id': _priv_id('privilege.delete')}, headers=h)
    assert resp.status_code == 403
    assert resp.get_json()['error']['kind'] == 'Forbidden'
    assert not services.oracle.is_granted(uid, 'privilege', 'delete')

    # Not even the platform administrator hands it out through the API
    resp = client.post('/privileges/grant', json={'user_id': world.clerk.id, 'privilege_id': _priv_id('privilege.update')},
                       headers=headers(world.owner))
    assert resp.status_code == 403


def test_grant_admin_command(app, world, services):
    assert not services.oracle.is_granted(world.reader.id, 'privilege', 'delete')
    result = app.test_cli_runner().invoke(args=['grant-admin', 'reader'])
    assert result.exit_code == 0, result.output
    assert services.oracle.is_granted_all(world.reader.id, [('privilege', 'create'), ('privilege', 'delete'), ('all', 'all')])

    missing = app.test_cli_runner().invoke(args=['grant-admin', 'nobody'])
    assert missing.exit_code != 0
