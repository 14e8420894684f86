def test_add_line_validation(client, world, headers):
    h = headers(world.clerk, world.a1)
    bid = world.bill.id
    assert client.post('/bill-items', json={'bill_id': bid, 'item_id': world.item_a.id, 'quantity': 0}, headers=h).status_code == 400
    assert client.post('/bill-items', json={'bill_id': bid, 'item_id': world.item_a.id, 'unit_price': '1.234'}, headers=h).status_code == 400
    assert client.post('/bill-items', json={'item_id': world.item_a.id}, headers=h).status_code == 400


def test_price_override_and_sparse_update(client, world, headers):
    h = headers(world.clerk, world.a1)
    resp = client.post('/bill-items', json={
        'bill_id': world.bill.id, 'item_id': world.item_a.id, 'quantity': 1, 'unit_price': '90.00', 'notes': 'discount',
    }, headers=h)
    assert resp.status_code == 201
    line = resp.get_json()['item']
    assert line['unit_price'] == '90.00' and line['total_price'] == '90.00'

    upd = client.put(f"/bill-items/{line['id']}", json={'quantity': 2}, headers=h)
    assert upd.status_code == 200
    body = upd.get_json()
    assert body['item']['quantity'] == 2 and body['item']['notes'] == 'discount'
    assert body['item']['total_price'] == '180.00'
    assert body['bill']['amount'] == '212.40'

    cleared = client.put(f"/bill-items/{line['id']}", json={'notes': None}, headers=h).get_json()
    assert cleared['item']['notes'] is None and cleared['item']['quantity'] == 2

    assert client.put(f"/bill-items/{line['id']}", json={}, headers=h).status_code == 400


def test_duplicate_and_cross_scope_errors(client, world, headers):
    h = headers(world.clerk, world.a1)
    payload = {'bill_id': world.bill.id, 'item_id': world.item_a.id, 'quantity': 1}
    assert client.post('/bill-items', json=payload, headers=h).status_code == 201
    dup = client.post('/bill-items', json=payload, headers=h)
    assert dup.status_code == 409
    assert dup.get_json()['error']['kind'] == 'DuplicateLine'

    cross = client.post('/bill-items', json={'bill_id': world.bill.id, 'item_id': world.item_north.id}, headers=h)
    assert cross.status_code == 400
    assert cross.get_json()['error']['kind'] == 'CrossScope'

    missing = client.post('/bill-items', json={'bill_id': world.bill.id, 'item_id': world.item_globex.id}, headers=h)
    assert missing.status_code == 404
    assert missing.get_json()['error']['context'] == {'entity': 'item', 'id': world.item_globex.id}


def test_bulk_add_and_stats(client, world, headers):
    h = headers(world.clerk, world.a1)
    resp = client.post('/bill-items/bulk', json={'bill_id': world.bill.id, 'items': [
        {'item_id': world.item_a.id, 'quantity': 2},
        {'item_id': world.item_b.id},
    ]}, headers=h)
    assert resp.status_code == 201, resp.get_json()
    assert len(resp.get_json()['items']) == 2
    assert resp.get_json()['bill']['amount'] == '286.00'

    listed = client.get(f'/bill-items/bill/{world.bill.id}', headers=h).get_json()['data']
    assert [l['item']['name'] for l in listed] == ['Widget', 'Service fee']
    assert listed[0]['item']['tax_rate']['percentage'] == '18.00'

    stats = client.get(f'/bill-items/stats?bill_id={world.bill.id}', headers=h).get_json()
    assert stats['total_relationships'] == 2
    assert stats['total_amount'] == '250.00'

    single = client.get(f"/bill-items/{listed[0]['id']}", headers=h)
    assert single.status_code == 200 and single.get_json()['quantity'] == 2


def test_bulk_requires_items(client, world, headers):
    h = headers(world.clerk, world.a1)
    assert client.post('/bill-items/bulk', json={'bill_id': world.bill.id, 'items': []}, headers=h).status_code == 400


def test_reader_cannot_mutate_lines(client, world, headers):
    resp = client.post('/bill-items', json={'bill_id': world.bill.id, 'item_id': world.item_a.id},
                       headers=headers(world.reader, world.a1))
    assert resp.status_code == 403
    assert resp.get_json()['error']['context']['action'] == 'update'


def test_lines_of_other_branch_are_invisible(client, world, headers):
    h = headers(world.clerk, world.a1)
    line_id = client.post('/bill-items', json={'bill_id': world.bill.id, 'item_id': world.item_b.id}, headers=h).get_json()['item']['id']
    other = headers(world.owner, world.a2)
    assert client.get(f'/bill-items/{line_id}', headers=other).status_code == 404
    assert client.delete(f'/bill-items/{line_id}', headers=other).status_code == 404


def test_oversized_numbers_are_rejected(client, world, headers):
    h = headers(world.clerk, world.a1)
    base = {'bill_id': world.bill.id, 'item_id': world.item_a.id}
    resp = client.post('/bill-items', json=dict(base, unit_price='1e30'), headers=h)
    assert resp.status_code == 400
    assert 'unit_price' in resp.get_json()['error']['detail']
    assert client.post('/bill-items', json=dict(base, quantity=10 ** 27), headers=h).status_code == 400
    assert client.post('/bill-items', json=dict(base, quantity=1_000_001), headers=h).status_code == 400
    assert client.post('/bill-items', json=dict(base, unit_price='10000000000.00'), headers=h).status_code == 400

    line = client.post('/bill-items', json=dict(base, quantity=1_000_000, unit_price='0.01'), headers=h)
    assert line.status_code == 201
    assert line.get_json()['item']['total_price'] == '10000.00'
    upd = client.put(f"/bill-items/{line.get_json()['item']['id']}", json={'unit_price': '20000'}, headers=h)
    assert upd.status_code == 400
    assert upd.get_json()['error']['kind'] == 'InvalidInput'


def test_list_all_lines_endpoint(client, world, headers):
    h = headers(world.clerk, world.a1)
    client.post('/bill-items', json={'bill_id': world.bill.id, 'item_id': world.item_a.id, 'quantity': 2}, headers=h)
    client.post('/bill-items', json={'bill_id': world.bill.id, 'item_id': world.item_b.id}, headers=h)
    resp = client.get(f'/bill-items?item_id={world.item_a.id}', headers=h)
    assert resp.status_code == 200
    body = resp.get_json()
    assert body['pagination']['total'] == 1
    row = body['data'][0]
    assert row['quantity'] == 2 and row['item']['name'] == 'Widget'
    assert row['bill'] == {'id': world.bill.id, 'title': 'Invoice 1', 'user_id': world.clerk.id}
    assert client.get('/bill-items?limit=1', headers=h).get_json()['pagination']['returned'] == 1
    assert client.get('/bill-items?bill_id=zero', headers=h).status_code == 400


def test_bills_for_item_endpoint_needs_both_privileges(client, world, headers, grant):
    h = headers(world.clerk, world.a1)
    client.post('/bill-items', json={'bill_id': world.bill.id, 'item_id': world.item_b.id, 'quantity': 3}, headers=h)
    resp = client.get(f'/bill-items/item/{world.item_b.id}', headers=h)
    assert resp.status_code == 200, resp.get_json()
    body = resp.get_json()
    assert body['item']['id'] == world.item_b.id and body['total_bills'] == 1
    assert body['data'][0]['bill']['amount'] == '150.00'

    denied = client.get(f'/bill-items/item/{world.item_b.id}', headers=headers(world.reader, world.a1))
    assert denied.status_code == 403
    assert denied.get_json()['error']['context'] == {'resource': 'item', 'action': 'read'}
    assert client.get(f'/bill-items/item/{world.item_north.id}', headers=h).status_code == 404
