def test_unknown_path_returns_error_json(client):
    resp = client.get('/non-existent-path')
    assert resp.status_code == 404
    body = resp.get_json()
    assert body['error']['status'] == 404
    assert 'detail' in body['error']


def test_missing_token_is_unauthenticated(client, world):
    resp = client.get('/bills', headers={'X-Branch-Id': str(world.a1.id)})
    assert resp.status_code == 401
    assert resp.get_json()['error']['kind'] == 'Unauthenticated'


def test_garbage_token_is_unauthenticated(client, world):
    resp = client.get('/bills', headers={'Authorization': 'Bearer not-a-jwt', 'X-Branch-Id': str(world.a1.id)})
    assert resp.status_code == 401
    assert resp.get_json()['error']['kind'] == 'Unauthenticated'


def test_token_for_deleted_subject(client, world, headers):
    from ledger.models.tenancy import User
    ghost = User(id=99999, username='ghost', email='ghost@example.com', password_hash='x')
    resp = client.get('/bills', headers=headers(ghost, world.a1))
    assert resp.status_code == 401
    assert resp.get_json()['error']['kind'] == 'Unauthenticated'


def test_scope_errors_are_distinct(client, world, headers):
    cases = [
        (None, 400, 'ScopeMissing'),
        ('abc', 400, 'ScopeMissing'),
        ('424242', 404, 'ScopeNotFound'),
        (str(world.a_closed.id), 403, 'ScopeInactive'),
        (str(world.a2.id), 403, 'ScopeForbidden'),
    ]
    for selector, status, kind in cases:
        h = headers(world.clerk)
        if selector is not None:
            h['X-Branch-Id'] = selector
        resp = client.get('/bills', headers=h)
        assert resp.status_code == status, (selector, resp.get_json())
        err = resp.get_json()['error']
        assert err['kind'] == kind
        assert err['status'] == status


def test_internal_error_shape(client, world, headers, monkeypatch):
    from ledger.services.bills import BillService

    def boom(self, *a, **k):
        raise RuntimeError('explode')
    monkeypatch.setattr(BillService, 'list_bills', boom)
    resp = client.get('/bills', headers=headers(world.clerk, world.a1))
    assert resp.status_code == 500
    body = resp.get_json()
    assert body['error']['status'] == 500
    assert body['error']['title'] == 'Internal Server Error'


def test_recalculation_failure_is_reported(client, world, headers, app, monkeypatch):
    from sqlalchemy.exc import OperationalError
    engine = app.extensions['ledger'].ledger

    def boom(session, bill_id):
        raise OperationalError('SELECT', {}, Exception('locked'))
    monkeypatch.setattr(engine, '_pricing', boom)
    resp = client.post('/bill-items', json={'bill_id': world.bill.id, 'item_id': world.item_a.id},
                       headers=headers(world.clerk, world.a1))
    assert resp.status_code == 500
    err = resp.get_json()['error']
    assert err['kind'] == 'RecalculationFailure'
    assert err['context'] == {'bill_id': world.bill.id}
