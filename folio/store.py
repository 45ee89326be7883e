"""
Section store: named JSON documents on top of a versioned file backend
"""

import json
import logging
import re
from datetime import datetime, timezone
from typing import Any, NamedTuple, Optional

from .backends import VersionedFileBackend
from .errors import BackendUnavailable, InvalidSection, NotFound, PersistenceUnavailable
from .validation import serialize_document

logger = logging.getLogger(__name__)

SECTION_ID_RE = re.compile(r'^[a-zA-Z0-9_-]+$')


class SectionDocument(NamedTuple):
    data: Any
    version: str


def check_section_id(section_id: str) -> str:
    """Raise InvalidSection unless section_id is safe to use as a file name"""
    if not isinstance(section_id, str) or not SECTION_ID_RE.match(section_id):
        raise InvalidSection(f'Invalid section identifier: {section_id!r}')
    return section_id


class SectionStore:
    def __init__(self, backend: VersionedFileBackend):
        self.backend = backend

    def read(self, section_id: str) -> SectionDocument:
        check_section_id(section_id)
        stored = self.backend.read(section_id)
        try:
            data = json.loads(stored.text)
        except ValueError as e:
            logger.error(f"Section {section_id} holds invalid JSON: {e}")
            raise BackendUnavailable(f'Stored section {section_id} is not valid JSON')
        return SectionDocument(data=data, version=stored.version)

    def current_version(self, section_id: str) -> Optional[str]:
        try:
            return self.backend.version(section_id)
        except NotFound:
            return None

    def write(self, section_id: str, document, actor: str = 'admin') -> str:
        """
        Replace a section wholesale.
        Reads the current version first and commits conditionally on it, so a
        concurrent commit in between surfaces as VersionConflict.
        """
        check_section_id(section_id)
        if not self.backend.is_configured:
            raise PersistenceUnavailable('Remote persistence backend is not configured')

        expected = self.current_version(section_id)
        timestamp = datetime.now(timezone.utc).strftime('%Y-%m-%dT%H:%M:%SZ')
        message = f'Update {section_id}.json via admin panel ({actor}, {timestamp})'

        return self.backend.write(section_id, serialize_document(document),
                                  expected_version=expected, message=message)
