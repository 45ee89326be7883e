"""
Versioned file backends for section storage

Both backends identify stored content by its git blob SHA, so a version
token read from one means the same thing as one read from the other.
Writes are conditional: the caller passes the version it read and the
backend refuses the write if the stored version has moved on.
"""

import base64
import hashlib
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import NamedTuple, Optional

import requests

from .errors import BackendUnavailable, NotFound, PersistenceUnavailable, VersionConflict

logger = logging.getLogger(__name__)

GITHUB_API_URL = 'https://api.github.com'


class VersionedFile(NamedTuple):
    text: str
    version: str


def blob_sha(data: bytes) -> str:
    """SHA the GitHub Contents API reports for a file holding data"""
    header = f'blob {len(data)}\0'.encode('utf-8')
    return hashlib.sha1(header + data).hexdigest()


def decode_text(data: bytes, name: str) -> str:
    try:
        return data.decode('utf-8')
    except UnicodeDecodeError as e:
        logger.error(f"{name} is not valid UTF-8: {e}")
        raise BackendUnavailable(f'Stored file {name} is not valid UTF-8', backend_message=str(e))


class VersionedFileBackend:
    name = 'base'

    @property
    def is_configured(self) -> bool:
        return True

    def read(self, section_id: str) -> VersionedFile:
        raise NotImplementedError

    def version(self, section_id: str) -> str:
        """Current version token without decoding the content; NotFound when absent"""
        raise NotImplementedError

    def write(self, section_id: str, text: str, expected_version: Optional[str] = None,
              message: str = '') -> str:
        raise NotImplementedError

    def describe(self):
        return {'backend': self.name, 'configured': self.is_configured}


class LocalDirectoryFile(VersionedFileBackend):
    """
    Sections stored as <base_dir>/<section>.json
    With writable=False the directory is served read-only and the store
    reports itself unconfigured for writes.
    """
    name = 'local'

    def __init__(self, base_dir, writable=True):
        self.base_dir = Path(base_dir)
        self.writable = writable
        self._lock = threading.Lock()

    @property
    def is_configured(self):
        return self.writable

    def _path(self, section_id):
        return self.base_dir / f'{section_id}.json'

    def _current(self, path):
        try:
            data = path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise BackendUnavailable(f'Could not read {path.name}', backend_message=str(e))
        return data

    def read(self, section_id):
        data = self._current(self._path(section_id))
        if data is None:
            raise NotFound(f'Section {section_id} not found')
        return VersionedFile(text=decode_text(data, f'{section_id}.json'), version=blob_sha(data))

    def version(self, section_id):
        data = self._current(self._path(section_id))
        if data is None:
            raise NotFound(f'Section {section_id} not found')
        return blob_sha(data)

    def write(self, section_id, text, expected_version=None, message=''):
        if not self.writable:
            raise PersistenceUnavailable(f'{self.base_dir} is served read-only')

        path = self._path(section_id)
        data = text.encode('utf-8')

        with self._lock:
            current = self._current(path)
            current_version = blob_sha(current) if current is not None else None
            if current_version != expected_version:
                raise VersionConflict(
                    f'Section {section_id} is at version {current_version}, expected {expected_version}',
                    expected=expected_version
                )

            tmp_name = None
            try:
                self.base_dir.mkdir(parents=True, exist_ok=True)
                fd, tmp_name = tempfile.mkstemp(dir=self.base_dir, prefix=f'.{section_id}.', suffix='.tmp')
                with os.fdopen(fd, 'wb') as f:
                    f.write(data)
                os.replace(tmp_name, path)
            except OSError as e:
                if tmp_name and os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise BackendUnavailable(f'Could not write {path.name}', backend_message=str(e))

        new_version = blob_sha(data)
        logger.info(f"📝 {message or 'Updated ' + path.name} -> {new_version[:7]}")
        return new_version

    def describe(self):
        info = super().describe()
        info['dataDir'] = str(self.base_dir)
        info['writable'] = self.writable
        return info


def build_backend(settings) -> VersionedFileBackend:
    """
    Pick the backend named by settings.backend.
    'auto' commits to GitHub when credentials are present and otherwise
    serves the local data directory read-only.
    """
    if settings.backend == 'local':
        return LocalDirectoryFile(settings.data_dir)

    github = GitHubContentsFile(
        token=settings.github_token,
        owner=settings.github_owner,
        repo=settings.github_repo,
        branch=settings.github_branch,
        base_path=settings.github_data_path,
        timeout=settings.github_timeout
    )
    if settings.backend == 'github' or github.is_configured:
        return github

    logger.warning("GitHub persistence not configured; serving data directory read-only")
    return LocalDirectoryFile(settings.data_dir, writable=False)


class GitHubContentsFile(VersionedFileBackend):
    """Sections stored as JSON files in a GitHub repository, via the Contents API"""
    name = 'github'

    def __init__(self, token, owner, repo, branch='', base_path='data', timeout=10,
                 session: requests.Session = None, api_url=GITHUB_API_URL):
        self.token = token
        self.owner = owner
        self.repo = repo
        self.branch = branch
        self.base_path = (base_path or '').strip('/')
        self.timeout = timeout
        self.session = session or requests.Session()
        self.api_url = api_url.rstrip('/')

    @property
    def is_configured(self):
        return bool(self.token and self.owner and self.repo)

    def _file_path(self, section_id):
        name = f'{section_id}.json'
        return f'{self.base_path}/{name}' if self.base_path else name

    def _url(self, section_id):
        return f'{self.api_url}/repos/{self.owner}/{self.repo}/contents/{self._file_path(section_id)}'

    def _headers(self, accept='application/vnd.github+json'):
        return {
            'Authorization': f'Bearer {self.token}',
            'Accept': accept,
            'X-GitHub-Api-Version': '2022-11-28'
        }

    @staticmethod
    def _error_message(resp):
        try:
            return resp.json().get('message', '')
        except ValueError:
            return resp.text[:200]

    def _request(self, method, section_id, **kwargs):
        if not self.is_configured:
            raise PersistenceUnavailable('GitHub token, owner and repo must all be set')
        url = self._url(section_id)
        logger.debug(f"GitHub API {method} {self.owner}/{self.repo}/{self._file_path(section_id)}")
        try:
            return self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            logger.error(f"GitHub API request failed: {e.__class__.__name__}")
            raise BackendUnavailable('Failed to connect to GitHub', backend_message=e.__class__.__name__)

    def _raise_for_status(self, resp, action):
        message = self._error_message(resp)
        if resp.status_code in (401, 403):
            logger.error(f"GitHub API {resp.status_code} during {action}: {message}")
            raise BackendUnavailable('GitHub authentication failed, check token permissions',
                                     backend_status=resp.status_code, backend_message=message)
        logger.error(f"GitHub API error {resp.status_code} during {action}: {message}")
        raise BackendUnavailable(f'GitHub API error during {action}',
                                 backend_status=resp.status_code, backend_message=message)

    def _params(self):
        return {'ref': self.branch} if self.branch else None

    def _metadata(self, section_id):
        resp = self._request('GET', section_id, headers=self._headers(), params=self._params())

        if resp.status_code == 404:
            raise NotFound(f'Section {section_id} not found')
        if resp.status_code != 200:
            self._raise_for_status(resp, 'read')

        try:
            payload = resp.json()
        except ValueError:
            raise BackendUnavailable('GitHub returned a non-JSON response', backend_status=resp.status_code)
        if not isinstance(payload, dict) or 'sha' not in payload:
            raise BackendUnavailable(f'{self._file_path(section_id)} is not a file', backend_status=resp.status_code)
        return payload

    def read(self, section_id):
        payload = self._metadata(section_id)
        if payload.get('encoding') == 'base64':
            data = base64.b64decode(payload.get('content', ''))
        else:
            # Files over 1 MB come back without inline content
            data = self._read_raw(section_id)

        return VersionedFile(text=decode_text(data, self._file_path(section_id)), version=payload['sha'])

    def version(self, section_id):
        return self._metadata(section_id)['sha']

    def _read_raw(self, section_id):
        resp = self._request('GET', section_id, headers=self._headers('application/vnd.github.raw+json'),
                             params=self._params())
        if resp.status_code == 404:
            raise NotFound(f'Section {section_id} not found')
        if resp.status_code != 200:
            self._raise_for_status(resp, 'read')
        return resp.content

    def write(self, section_id, text, expected_version=None, message=''):
        body = {
            'message': message or f'Update {self._file_path(section_id)}',
            'content': base64.b64encode(text.encode('utf-8')).decode('ascii')
        }
        if self.branch:
            body['branch'] = self.branch
        if expected_version:
            body['sha'] = expected_version

        resp = self._request('PUT', section_id, headers=self._headers(), json=body)

        if resp.status_code in (200, 201):
            try:
                new_version = resp.json()['content']['sha']
            except (ValueError, KeyError, TypeError):
                raise BackendUnavailable('GitHub accepted the write but returned no content SHA',
                                         backend_status=resp.status_code)
            logger.info(f"✅ Committed {self._file_path(section_id)} -> {new_version[:7]}")
            return new_version

        detail = self._error_message(resp)
        # 409: sha does not match; 422: sha missing for a file that now exists
        if resp.status_code == 409 or (resp.status_code == 422 and 'sha' in detail.lower()):
            logger.warning(f"Version conflict on {self._file_path(section_id)}: {detail}")
            raise VersionConflict(f'Section {section_id} was modified by another writer',
                                  expected=expected_version)

        self._raise_for_status(resp, 'write')

    def describe(self):
        info = super().describe()
        info.update({
            'repository': f'{self.owner}/{self.repo}' if self.owner and self.repo else None,
            'branch': self.branch or None,
            'path': self.base_path
        })
        return info
