import base64
import json

import pytest
import requests

from folio.audit import AuditLog
from folio.backends import LocalDirectoryFile, blob_sha
from folio.config import Settings
from folio.ratelimit import RateLimiter
from folio.server import create_app

ADMIN_SECRET = 'correct-horse-battery-staple'
PASSWORD_HASH = '240be518fabd2724ddb6f04eeb1da5967448d7e831c08c8fa822809f74c720a9'
CSRF_TOKEN = 'ab' * 32


class FakeClock:
    def __init__(self, now=1_700_000_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeResponse:
    def __init__(self, status_code, payload=None, content=b''):
        self.status_code = status_code
        self._payload = payload
        self.content = content if payload is None else json.dumps(payload).encode('utf-8')
        self.text = self.content.decode('utf-8', errors='replace')

    def json(self):
        if self._payload is None:
            raise ValueError('No JSON body')
        return self._payload


class FakeGitHub:
    """Stands in for requests.Session, enforcing the Contents API sha rules"""

    def __init__(self):
        self.files = {}
        self.calls = []
        self.fail_with = None
        self.status_override = None

    def request(self, method, url, timeout=None, headers=None, params=None, json=None):
        self.calls.append({'method': method, 'url': url, 'headers': headers, 'params': params, 'json': json})
        if self.fail_with is not None:
            raise self.fail_with
        if self.status_override is not None:
            return FakeResponse(self.status_override, {'message': 'Bad credentials'})

        path = url.split('/contents/', 1)[1]
        if method == 'GET':
            if path not in self.files:
                return FakeResponse(404, {'message': 'Not Found'})
            data = self.files[path]
            if headers and headers.get('Accept') == 'application/vnd.github.raw+json':
                return FakeResponse(200, content=data)
            encoded = base64.encodebytes(data).decode('ascii')
            return FakeResponse(200, {'sha': blob_sha(data), 'content': encoded, 'encoding': 'base64',
                                      'path': path})

        if method == 'PUT':
            current = self.files.get(path)
            sha = json.get('sha')
            if current is not None and sha is None:
                return FakeResponse(422, {'message': 'Invalid request.\n\n"sha" wasn\'t supplied.'})
            if current is not None and sha != blob_sha(current):
                return FakeResponse(409, {'message': f'{path} does not match {sha}'})
            data = base64.b64decode(json['content'])
            self.files[path] = data
            return FakeResponse(201 if current is None else 200,
                                {'content': {'sha': blob_sha(data), 'path': path},
                                 'commit': {'message': json['message']}})

        return FakeResponse(405, {'message': 'Method not allowed'})


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_github():
    return FakeGitHub()


@pytest.fixture
def connection_error():
    return requests.ConnectionError('connection refused')


@pytest.fixture
def data_dir(tmp_path):
    path = tmp_path / 'data'
    path.mkdir()
    return path


@pytest.fixture
def settings(data_dir):
    return Settings(
        admin_secret=ADMIN_SECRET,
        admin_password_hash=PASSWORD_HASH,
        backend='local',
        data_dir=str(data_dir),
        rate_limit_max=5,
        rate_limit_window_seconds=900,
        max_payload_bytes=2048,
        cloudinary_cloud_name='demo-cloud'
    )


@pytest.fixture
def audit_log():
    return AuditLog(capacity=100)


@pytest.fixture
def rate_limiter(clock):
    return RateLimiter(max_requests=5, window_seconds=900, clock=clock)


@pytest.fixture
def backend(data_dir):
    return LocalDirectoryFile(data_dir)


@pytest.fixture
def app(settings, backend, rate_limiter, audit_log):
    app = create_app(settings, backend=backend, rate_limiter=rate_limiter, audit_log=audit_log)
    app.config['TESTING'] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def admin_headers():
    return {
        'Authorization': f'Bearer {ADMIN_SECRET}',
        'X-CSRF-Token': CSRF_TOKEN
    }
