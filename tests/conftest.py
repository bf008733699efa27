"""
Shared pytest fixtures for the StoreCheck test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - store / sector / job functions / users: seeded organisation
    - receiving_template: template with document-number + declared-value fields
    - make_checklist: factory that persists a completed checklist with responses
"""

from datetime import datetime, timezone

import pytest

from storecheck import create_app
from storecheck.models import db as _db


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Organisation fixtures ────────────────────────────────────────────────


@pytest.fixture()
def store():
    from storecheck.models.store import Store
    s = Store(name="Loja Centro")
    _db.session.add(s)
    _db.session.commit()
    return s


@pytest.fixture()
def sector(store):
    from storecheck.models.store import Sector
    s = Sector(store_id=store.id, name="Recebimento")
    _db.session.add(s)
    _db.session.commit()
    return s


@pytest.fixture()
def job_functions():
    from storecheck.models.store import JobFunction
    stock = JobFunction(name="Estoquista")
    apprentice = JobFunction(name="Jovem Aprendiz")
    _db.session.add_all([stock, apprentice])
    _db.session.commit()
    return {"primary": stock, "secondary": apprentice}


def _create_user(full_name, *, email=None, function=None, store=None, sector=None,
                 default_sector_id=None, is_admin=False):
    from storecheck.models.store import User, UserStore
    user = User(
        full_name=full_name,
        email=email,
        function_id=function.id if function else None,
        sector_id=default_sector_id,
        is_admin=is_admin,
    )
    _db.session.add(user)
    _db.session.flush()
    if store is not None:
        _db.session.add(UserStore(
            user_id=user.id, store_id=store.id, sector_id=sector.id if sector else None,
        ))
    _db.session.commit()
    return user


@pytest.fixture()
def primary_user(store, sector, job_functions):
    """Stock clerk: fills the primary leg."""
    return _create_user("Carla Souza", email="carla@loja.test",
                        function=job_functions["primary"], store=store, sector=sector)


@pytest.fixture()
def secondary_user(store, sector, job_functions):
    """Apprentice: fills the secondary leg."""
    return _create_user("Joao Lima", email="joao@loja.test",
                        function=job_functions["secondary"], store=store, sector=sector)


@pytest.fixture()
def admin_user():
    return _create_user("Admin Geral", email="admin@loja.test", is_admin=True)


@pytest.fixture()
def user_factory():
    return _create_user


# ── Template fixtures ────────────────────────────────────────────────────


@pytest.fixture()
def receiving_template():
    """Receiving checklist: tagged document-number and declared-value fields."""
    from storecheck.models.checklist import ChecklistTemplate, TemplateField
    template = ChecklistTemplate(name="Recebimento de Mercadorias")
    _db.session.add(template)
    _db.session.flush()
    _db.session.add_all([
        TemplateField(template_id=template.id, name="Documento", field_type="text",
                      validation_role="document_number", sort_order=1),
        TemplateField(template_id=template.id, name="Valor declarado", field_type="number",
                      validation_role="declared_value", sort_order=2),
        TemplateField(template_id=template.id, name="Observacoes", field_type="text", sort_order=3),
    ])
    _db.session.commit()
    return template


def field_named(template, name):
    return next(f for f in template.fields if f.name == name)


@pytest.fixture()
def make_checklist():
    """Factory: persist a completed checklist with ``{field_id: FieldResponse-like dict}``."""
    from storecheck.models.checklist import Checklist, ChecklistResponse

    def _make(template, store, user, values, *, completed_at=None):
        checklist = Checklist(
            template_id=template.id,
            store_id=store.id,
            created_by=user.id,
            status="completed",
            completed_at=completed_at or datetime.now(timezone.utc),
        )
        _db.session.add(checklist)
        _db.session.flush()
        for field_id, value in values.items():
            _db.session.add(ChecklistResponse(
                checklist_id=checklist.id,
                field_id=field_id,
                value_text=value.get("value_text"),
                value_number=value.get("value_number"),
                value_json=value.get("value_json"),
            ))
        _db.session.commit()
        return checklist

    return _make
