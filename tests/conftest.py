import pytest
from flask import Flask
from sacrud import CrudAPI
from sacrud.hidden import HIDDEN_FIELDS
from models import db, seed, Item, Author, Book, Setting


@pytest.fixture
def app():
    """
    Flask app with an in-memory sqlite database holding the test data
    """
    app = Flask("sacrud_test")
    app.config.update(SQLALCHEMY_DATABASE_URI="sqlite://", TESTING=True)
    db.init_app(app)
    with app.app_context():
        db.create_all()
        seed()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def session(app):
    return db.session


@pytest.fixture(autouse=True)
def _clear_hidden_cache():
    yield
    for model in (Item, Author, Book, Setting):
        if HIDDEN_FIELDS in model.__dict__:
            delattr(model, HIDDEN_FIELDS)


@pytest.fixture
def api(app):
    return CrudAPI(app)


@pytest.fixture
def expose(app, api):
    """
    Expose a model and return a test client
    usage: client = expose(Item, {"find": "default"})
    """

    def _expose(model, methods, path=None):
        api.expose_object(model, methods, path)
        return app.test_client()

    return _expose
