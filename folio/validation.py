"""
Input validation and XSS screening for admin-submitted content

Documents are screened, not rewritten: anything matching a disallowed
pattern is reported as a violation and the write is refused. The
sanitize_* helpers clean free-form input (contact forms) where dropping the
offending text is acceptable.
"""

import json
import re
from typing import Any, Dict, List
from urllib.parse import urlparse

MAX_PAYLOAD_BYTES = 10 * 1024 * 1024

MAX_LENGTHS = {
    'title': 200,
    'summary': 500,
    'description': 5000,
    'content': 50000,
    'url': 2000,
    'tag': 50,
    'name': 100,
    'email': 320,
    'phone': 20
}
DEFAULT_MAX_LENGTH = 1000

PATTERNS = {
    'email': re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$'),
    'url': re.compile(r'^https?://.+'),
    'phone': re.compile(r'^\+?[0-9\-()\s]+$'),
    'slug': re.compile(r'^[a-z0-9-]+$'),
    'filename': re.compile(r'^[a-zA-Z0-9._-]+$'),
}

# (rule name, pattern)
XSS_PATTERNS = [
    ('script-tag', re.compile(r'<script\b[^>]*>', re.IGNORECASE)),
    ('iframe-tag', re.compile(r'<iframe\b[^>]*>', re.IGNORECASE)),
    ('object-tag', re.compile(r'<object\b[^>]*>', re.IGNORECASE)),
    ('embed-tag', re.compile(r'<embed\b[^>]*>', re.IGNORECASE)),
    ('link-tag', re.compile(r'<link\b[^>]*>', re.IGNORECASE)),
    ('meta-tag', re.compile(r'<meta\b[^>]*>', re.IGNORECASE)),
    ('javascript-url', re.compile(r'javascript:', re.IGNORECASE)),
    ('vbscript-url', re.compile(r'vbscript:', re.IGNORECASE)),
    ('event-handler', re.compile(r'\bon\w+\s*=', re.IGNORECASE)),
    ('eval-call', re.compile(r'\beval\s*\(', re.IGNORECASE)),
    ('expression-call', re.compile(r'\bexpression\s*\(', re.IGNORECASE)),
    ('settimeout-call', re.compile(r'\bsetTimeout\s*\(', re.IGNORECASE)),
    ('setinterval-call', re.compile(r'\bsetInterval\s*\(', re.IGNORECASE)),
    ('function-constructor', re.compile(r'\bFunction\s*\(', re.IGNORECASE)),
]

# Closing tags are stripped along with the openers when sanitizing
_CLOSING_TAGS = re.compile(r'</(script|iframe|object)\s*>', re.IGNORECASE)


def serialize_document(document) -> str:
    """The exact text committed to the store for a section"""
    return json.dumps(document, indent=2, ensure_ascii=False) + '\n'


def find_xss(value: str):
    """Name of the first disallowed pattern found in value, or None"""
    for rule, pattern in XSS_PATTERNS:
        if pattern.search(value):
            return rule
    return None


def contains_xss(value: str) -> bool:
    return find_xss(value) is not None


def _violation(path, rule, message):
    return {'path': path, 'rule': rule, 'message': message}


def size_violation(max_bytes, size=None):
    if size is None:
        return _violation('$', 'size', f'Document exceeds the {max_bytes} byte limit')
    return _violation('$', 'size', f'Document is {size} bytes, limit is {max_bytes}')


def _walk(node, path, violations):
    if isinstance(node, str):
        rule = find_xss(node)
        if rule:
            violations.append(_violation(path, rule, 'Disallowed content detected'))
    elif isinstance(node, dict):
        for key, value in node.items():
            rule = find_xss(str(key))
            if rule:
                violations.append(_violation(path, rule, f'Disallowed content in key {key!r}'))
            _walk(value, f'{path}.{key}', violations)
    elif isinstance(node, list):
        for index, item in enumerate(node):
            _walk(item, f'{path}[{index}]', violations)


def validate_project(data: Dict[str, Any]) -> List[str]:
    errors = []

    title = data.get('title')
    if not isinstance(title, str) or len(title) < 3:
        errors.append('Project title must be at least 3 characters')

    summary = data.get('summary')
    if not isinstance(summary, str) or len(summary) < 10:
        errors.append('Project summary must be at least 10 characters')

    link = data.get('link')
    if link and not (isinstance(link, str) and PATTERNS['url'].match(link)):
        errors.append('Project link must be a valid URL')

    if 'tech' in data and data['tech'] is not None and not isinstance(data['tech'], list):
        errors.append('Technologies must be an array')

    return errors


def validate_blog(data: Dict[str, Any]) -> List[str]:
    errors = []

    title = data.get('title')
    if not isinstance(title, str) or len(title) < 5:
        errors.append('Blog title must be at least 5 characters')

    content = data.get('content')
    if not isinstance(content, str) or len(content) < 50:
        errors.append('Blog content must be at least 50 characters')

    slug = data.get('slug')
    if slug and not (isinstance(slug, str) and PATTERNS['slug'].match(slug)):
        errors.append('Blog slug can only contain lowercase letters, numbers, and hyphens')

    image = data.get('image')
    if image and not (isinstance(image, str)
                      and (PATTERNS['url'].match(image) or image.startswith('data:'))):
        errors.append('Blog image must be a valid URL or base64 data')

    return errors


# section id -> validator for each entry of its "items" list
RECORD_VALIDATORS = {
    'projects': validate_project,
    'blogs': validate_blog,
}


def validate_document(document, max_bytes: int = MAX_PAYLOAD_BYTES, section: str = None) -> List[Dict[str, str]]:
    """
    Screen a section document before it is written.
    Returns a list of violations ({path, rule, message}); empty means valid.
    """
    if not isinstance(document, dict):
        return [_violation('$', 'type', 'Document must be a JSON object')]

    violations = []
    try:
        size = len(serialize_document(document).encode('utf-8'))
        if size > max_bytes:
            # Skip the content walk: the document is rejected either way
            return [size_violation(max_bytes, size)]
        _walk(document, '$', violations)
    except RecursionError:
        return [_violation('$', 'depth', 'Document is nested too deeply')]

    validator = RECORD_VALIDATORS.get(section)
    items = document.get('items')
    if validator and isinstance(items, list):
        for index, item in enumerate(items):
            if not isinstance(item, dict):
                violations.append(_violation(f'$.items[{index}]', 'record', 'Entry must be an object'))
                continue
            for message in validator(item):
                violations.append(_violation(f'$.items[{index}]', 'record', message))

    return violations


def get_max_length(field: str) -> int:
    field = field.lower()
    for name, length in MAX_LENGTHS.items():
        if name in field:
            return length
    return DEFAULT_MAX_LENGTH


def sanitize_text(text: str, max_length: int = DEFAULT_MAX_LENGTH) -> str:
    if not text:
        return ''
    cleaned = _CLOSING_TAGS.sub('', text)
    for _, pattern in XSS_PATTERNS:
        cleaned = pattern.sub('', cleaned)
    return cleaned.strip()[:max_length]


def sanitize_url(url: str) -> str:
    """Return url if it is an absolute http(s) URL, else an empty string"""
    try:
        parsed = urlparse(url.strip())
    except (AttributeError, ValueError):
        return ''
    if parsed.scheme not in ('http', 'https') or not parsed.netloc:
        return ''
    return parsed.geturl()


def sanitize_filename(filename: str) -> str:
    return re.sub(r'[^a-zA-Z0-9._-]', '', filename)[:255]


def sanitize_form_data(form_data: Dict[str, Any]) -> Dict[str, Any]:
    """Clean each field according to what its name says it holds"""
    sanitized = {}
    for key, value in form_data.items():
        lowered = key.lower()
        if isinstance(value, str):
            if 'url' in lowered or 'link' in lowered:
                sanitized[key] = sanitize_url(value)
            elif 'filename' in lowered:
                sanitized[key] = sanitize_filename(value)
            elif 'image' in lowered:
                sanitized[key] = value if value.startswith('data:') else sanitize_url(value)
            else:
                sanitized[key] = sanitize_text(value, get_max_length(key))
        elif isinstance(value, list):
            sanitized[key] = [sanitize_text(item, 100) if isinstance(item, str) else item for item in value]
        else:
            sanitized[key] = value
    return sanitized
