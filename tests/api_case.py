import unittest

from fastapi.testclient import TestClient
from sqlmodel import Session

from app.core.auth import get_current_user
from app.database import get_session
from app.main import app
from tests.factories import make_engine, make_user

API = "/api/v1"


class ApiTestCase(unittest.TestCase):
    """TestClient on an in-memory database; `as_user` swaps the caller."""

    def setUp(self):
        self.engine = make_engine()
        self.session = Session(self.engine)
        self.current_user = None

        def session_override():
            yield self.session

        app.dependency_overrides[get_session] = session_override
        app.dependency_overrides[get_current_user] = lambda: self.current_user
        self.client = TestClient(app)

        self.customer = make_user(self.session, "customer")
        self.runner = make_user(self.session, "runner", name="Sam")
        self.admin = make_user(self.session, "admin")

    def tearDown(self):
        app.dependency_overrides.clear()
        self.session.close()
        self.engine.dispose()

    def as_user(self, user):
        self.current_user = user
        return self.client
