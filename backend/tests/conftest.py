import os, sys, pytest
from decimal import Decimal
from types import SimpleNamespace
# Ensure backend directory is on path so 'ledger' can be imported
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
from flask_jwt_extended import create_access_token
from sqlalchemy import select
from ledger import create_app, get_db
from ledger.constants.privileges import DEFAULT_PRIVILEGES
from ledger.models.authz import Base, Privilege, UserPrivilege
from ledger.models.tenancy import Organization, Branch, User, UserBranch
from ledger.models.catalog import TaxRate, Item, Client
from ledger.models.bill import Bill

TEST_CONFIG = {
    'TESTING': True,
    'DATABASE_URL': 'sqlite+pysqlite:///:memory:',
    'JWT_SECRET_KEY': 'test-secret-key-that-is-long-enough-for-hs256',
    'LOG_LEVEL': 'WARNING',
}


@pytest.fixture()
def app():
    app = create_app(TEST_CONFIG)
    with app.app_context():
        engine = get_db().get_bind()
        Base.metadata.create_all(engine)
        yield app
        get_db().close()
        Base.metadata.drop_all(engine)


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def session(app):
    return get_db()


@pytest.fixture()
def services(app):
    return app.extensions['ledger']


def _user(session, org, username, role=User.ROLE_USER):
    u = User(organization_id=org.id if org else None, username=username, email=f'{username}@example.com', role=role, password_hash='')
    u.set_password('pw-secret')
    session.add(u); session.flush()
    return u


@pytest.fixture()
def grant(session):
    """Grant (resource, action) to a user; extra kwargs go to UserPrivilege."""
    def _grant(user, resource, action, **kwargs):
        p = session.execute(select(Privilege).where(Privilege.resource == resource, Privilege.action == action)).scalar_one()
        up = UserPrivilege(user_id=user.id, privilege_id=p.id, **kwargs)
        session.add(up)
        session.commit()
        return up
    return _grant


@pytest.fixture()
def world(session, grant):
    """Two organizations, branches, a tax/item catalog, users with different access and one empty bill."""
    for row in DEFAULT_PRIVILEGES:
        session.add(Privilege(**row, is_active=True))
    org_a = Organization(name='Acme'); org_b = Organization(name='Globex')
    session.add_all([org_a, org_b]); session.flush()
    a1 = Branch(organization_id=org_a.id, name='Main', code='MAIN', is_active=True)
    a2 = Branch(organization_id=org_a.id, name='North', code='NORTH', is_active=True)
    a_closed = Branch(organization_id=org_a.id, name='Closed', code='CLOSED', is_active=False)
    b1 = Branch(organization_id=org_b.id, name='Globex HQ', code='HQ', is_active=True)
    session.add_all([a1, a2, a_closed, b1]); session.flush()

    vat = TaxRate(organization_id=None, name='VAT 18', percentage=Decimal('18.00'))
    exempt = TaxRate(organization_id=org_a.id, name='Exempt', percentage=Decimal('0.00'))
    session.add_all([vat, exempt]); session.flush()
    item_a = Item(organization_id=org_a.id, branch_id=a1.id, name='Widget', unit_price=Decimal('100.00'), tax_rate_id=vat.id)
    item_b = Item(organization_id=org_a.id, branch_id=None, name='Service fee', unit_price=Decimal('50.00'), tax_rate_id=exempt.id)
    item_north = Item(organization_id=org_a.id, branch_id=a2.id, name='North gadget', unit_price=Decimal('10.00'), tax_rate_id=vat.id)
    item_globex = Item(organization_id=org_b.id, branch_id=b1.id, name='Globex part', unit_price=Decimal('5.00'), tax_rate_id=vat.id)
    session.add_all([item_a, item_b, item_north, item_globex]); session.flush()
    acme_client = Client(organization_id=org_a.id, name='Wayne Enterprises')
    globex_client = Client(organization_id=org_b.id, name='Initech')
    session.add_all([acme_client, globex_client]); session.flush()

    owner = _user(session, org_a, 'owner', role=User.ROLE_OWNER)
    clerk = _user(session, org_a, 'clerk')
    reader = _user(session, org_a, 'reader')
    outsider = _user(session, org_b, 'outsider')
    session.add_all([
        UserBranch(user_id=clerk.id, branch_id=a1.id, is_primary=True, can_login=True),
        UserBranch(user_id=reader.id, branch_id=a1.id, is_primary=True, can_login=True),
        UserBranch(user_id=reader.id, branch_id=a2.id, is_primary=False, can_login=False),
        UserBranch(user_id=outsider.id, branch_id=b1.id, is_primary=True, can_login=True),
    ])
    bill = Bill(branch_id=a1.id, user_id=clerk.id, title='Invoice 1')
    session.add(bill)
    session.commit()

    for resource, action in [('all', 'all')] + [(p['resource'], p['action']) for p in DEFAULT_PRIVILEGES if p['resource'] != 'all']:
        grant(owner, resource, action)
    for action in ('read', 'create', 'update', 'delete'):
        grant(clerk, 'bill', action)
    grant(clerk, 'item', 'read')
    grant(clerk, 'client', 'read')
    grant(reader, 'bill', 'read')
    for action in ('read', 'create', 'update'):
        grant(outsider, 'bill', action)

    return SimpleNamespace(
        org_a=org_a, org_b=org_b, a1=a1, a2=a2, a_closed=a_closed, b1=b1,
        vat=vat, exempt=exempt, item_a=item_a, item_b=item_b, item_north=item_north, item_globex=item_globex,
        acme_client=acme_client, globex_client=globex_client,
        owner=owner, clerk=clerk, reader=reader, outsider=outsider, bill=bill,
    )


@pytest.fixture()
def headers(app):
    """Build request headers for a user, optionally selecting a branch."""
    def _headers(user, branch=None, **claims):
        claims.setdefault('organization_id', user.organization_id)
        token = create_access_token(identity=str(user.id), additional_claims=claims)
        h = {'Authorization': f'Bearer {token}'}
        if branch is not None:
            h['X-Branch-Id'] = str(branch.id if hasattr(branch, 'id') else branch)
        return h
    return _headers


@pytest.fixture()
def refetch(session):
    """Reload an ORM row from the database, bypassing stale identity-map state."""
    def _refetch(model, pk):
        session.expire_all()
        return session.get(model, pk)
    return _refetch
