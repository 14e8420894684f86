import click
from flask import Flask
from werkzeug.exceptions import HTTPException
from flask_jwt_extended import JWTManager
from sqlalchemy import create_engine, select
from sqlalchemy.pool import StaticPool
from sqlalchemy.orm import sessionmaker, scoped_session
from dotenv import load_dotenv
from datetime import timedelta
from typing import Optional, Dict, Any
import logging
import os

load_dotenv()

db_engine = None
SessionLocal = None
jwt = JWTManager()


def _error_payload(status: int, title: str, detail: str, kind: Optional[str] = None):
    error = {'status': status, 'title': title, 'detail': detail}
    if kind:
        error['kind'] = kind
    return {'error': error}, status


def create_app(config: Optional[Dict[str, Any]] = None):
    global db_engine, SessionLocal
    app = Flask(__name__)

    app.config['JWT_SECRET_KEY'] = os.getenv('JWT_SECRET_KEY', 'dev-secret-change-me-to-32-bytes-min')
    app.config['DATABASE_URL'] = os.getenv('DATABASE_URL', 'sqlite:///dev.db')
    app.config['JWT_ACCESS_TOKEN_EXPIRES'] = timedelta(hours=int(os.getenv('JWT_ACCESS_TOKEN_EXPIRES_HOURS', '24')))
    app.config['LOG_LEVEL'] = os.getenv('LOG_LEVEL', 'INFO')
    app.config['BRANCH_HEADER'] = os.getenv('BRANCH_HEADER', 'X-Branch-Id')

    if config:
        # allow tests or callers to override default config values
        app.config.update(config)

    logging.basicConfig(level=app.config['LOG_LEVEL'])
    logging.getLogger().setLevel(app.config['LOG_LEVEL'])

    # Database
    db_url = app.config['DATABASE_URL']
    if db_url.endswith(':memory:'):
        # Ensure a single shared in-memory SQLite database across all sessions
        db_engine = create_engine(
            db_url,
            echo=False,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        db_engine = create_engine(db_url, echo=False)
    SessionLocal = scoped_session(sessionmaker(bind=db_engine, expire_on_commit=False, autoflush=False))

    jwt.init_app(app)

    # Register every model on Base.metadata before create_all
    from .models import authz, tenancy, catalog, bill  # noqa: F401
    from .services.container import build_services
    app.extensions['ledger'] = build_services(get_db, clock=app.config.get('LEDGER_CLOCK'))

    from .routes.auth import auth_bp
    from .routes.privileges import priv_bp
    from .routes.branches import branches_bp
    from .routes.bills import bills_bp
    from .routes.bill_items import bill_items_bp
    from .routes.catalog import cat_bp
    app.register_blueprint(auth_bp, url_prefix='/auth')
    app.register_blueprint(priv_bp, url_prefix='/privileges')
    app.register_blueprint(branches_bp, url_prefix='/branches')
    app.register_blueprint(bills_bp, url_prefix='/bills')
    app.register_blueprint(bill_items_bp, url_prefix='/bill-items')
    app.register_blueprint(cat_bp, url_prefix='/catalog')

    @app.route('/healthz')
    def health():
        return {'status': 'ok'}

    @app.teardown_appcontext
    def remove_session(exc=None):
        SessionLocal.remove()

    # Unified error handler producing standardized JSON shape
    @app.errorhandler(Exception)
    def handle_errors(e):  # type: ignore
        from .errors import LedgerError
        # Discard whatever the failed request left pending in the session
        SessionLocal.rollback()
        if isinstance(e, LedgerError):
            if e.code >= 500:
                app.logger.error('%s: %s context=%s', e.kind, e.description, e.context)
            return {'error': e.to_dict()}, e.code
        if isinstance(e, HTTPException):
            return _error_payload(e.code, e.name, e.description)
        # Unhandled exception
        app.logger.exception('Unhandled exception')
        return _error_payload(500, 'Internal Server Error', 'Unexpected error')

    @jwt.unauthorized_loader
    def missing_token(reason: str):
        return _error_payload(401, 'Unauthorized', reason, kind='Unauthenticated')

    @jwt.invalid_token_loader
    def invalid_token(reason: str):
        return _error_payload(401, 'Unauthorized', reason, kind='Unauthenticated')

    @jwt.expired_token_loader
    def expired_token(jwt_header, jwt_payload):
        return _error_payload(401, 'Unauthorized', 'Token has expired', kind='Unauthenticated')

    @app.cli.command('init-db')
    def init_db():
        """Create all tables."""
        authz.Base.metadata.create_all(db_engine)
        print('tables created')

    @app.cli.command('seed-privileges')
    def seed_privileges():
        """Insert the default privilege catalog (idempotent)."""
        created = app.extensions['ledger'].privileges.initialize_default_privileges()
        print(f'{len(created)} privileges created')

    @app.cli.command('grant-admin')
    @click.argument('username')
    def grant_admin(username):
        """Make USERNAME a platform administrator (may edit the shared privilege catalog)."""
        user = get_db().execute(select(tenancy.User).where(tenancy.User.username == username)).scalar_one_or_none()
        if user is None:
            raise click.ClickException(f'user {username} not found')
        grants = app.extensions['ledger'].privileges.grant_platform_admin(user.id)
        print(f'{len(grants)} privileges granted to {username}')

    return app


def get_db():
    return SessionLocal()
