import datetime
import logging
import os
import sys

import jwt
import pytest

from app import create_app
from auth import hash_password
from config import TestConfig


@pytest.fixture(scope='session', autouse=True)
def _tests_log_to_stdout():
    root = logging.getLogger()
    if not any(getattr(h, 'stream', None) is sys.stdout for h in root.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter('%(levelname)s %(name)s: %(message)s'))
        root.addHandler(handler)
    root.setLevel(os.getenv('TEST_LOG_LEVEL', 'WARNING').upper())


def build_app(tmp_path, backend):
    app = create_app(
        TestConfig,
        STORE_BACKEND=backend,
        DATABASE_URL=f"sqlite:///{tmp_path / 'test.db'}",
        UPLOAD_FOLDER=str(tmp_path / 'uploads'),
    )
    store = app.extensions['store']
    store.create_user('admin', 'admin@school.com', hash_password('password'), 'admin')
    store.create_user('teacher1', 'teacher1@school.com', hash_password('password'), 'teacher')
    return app


@pytest.fixture(params=['sql', 'memory'])
def app(request, tmp_path):
    app = build_app(tmp_path, request.param)
    yield app
    store = app.extensions['store']
    if store.backend == 'sql':
        store.dispose()


@pytest.fixture
def store(app):
    return app.extensions['store']


@pytest.fixture
def client(app):
    return app.test_client()


def login(client, username, password='password'):
    resp = client.post('/api/auth/login', json={'username': username, 'password': password})
    assert resp.status_code == 200, resp.get_json()
    return {'Authorization': f"Bearer {resp.get_json()['token']}"}


@pytest.fixture
def admin_headers(client):
    return login(client, 'admin')


@pytest.fixture
def teacher_headers(client):
    return login(client, 'teacher1')


@pytest.fixture
def token_for(app):
    """Sign arbitrary claims with the app's secret."""
    def _sign(user_id=1, username='someone', role='admin', expires_in=3600):
        now = datetime.datetime.now(datetime.timezone.utc)
        claims = {
            'id': user_id,
            'username': username,
            'role': role,
            'iat': now,
            'exp': now + datetime.timedelta(seconds=expires_in),
        }
        token = jwt.encode(claims, app.config['JWT_SECRET'], algorithm=app.config['JWT_ALGORITHM'])
        return {'Authorization': f'Bearer {token}'}
    return _sign


STUDENT = {
    'full_name': 'Aisyah Rahman',
    'date_of_birth': '2010-05-01',
    'class': '10A',
    'status': 'active',
    'sports_house': 'blue',
    'cca': 'silat',
    'cca_optional': 'swimming',
    'quran_teacher': 'Ustaz Hamid',
    'gender': 'female',
}


@pytest.fixture
def make_student(client, admin_headers):
    def _make(**overrides):
        payload = dict(STUDENT, **overrides)
        resp = client.post('/api/students', json=payload, headers=admin_headers)
        assert resp.status_code == 201, resp.get_json()
        return resp.get_json()['student']
    return _make
