"""
Static inquiry-form configuration (service -> field list), kept as data in forms.yaml
"""

from functools import lru_cache
from pathlib import Path

import yaml

from .errors import NotFound
from .validation import contains_xss, sanitize_form_data

FORMS_FILE = Path(__file__).with_name('forms.yaml')

CHOICE_TYPES = ('select', 'radio')


@lru_cache(maxsize=None)
def load_forms(path=FORMS_FILE):
    with open(path, 'r', encoding='utf-8') as f:
        forms = yaml.safe_load(f) or {}
    if not isinstance(forms, dict):
        raise ValueError(f'{path} must map service names to form definitions')
    return forms


def get_form(service: str, forms=None):
    forms = load_forms() if forms is None else forms
    if service not in forms:
        raise NotFound(f'Unknown service: {service}')
    return forms[service]


def validate_inquiry(service: str, data: dict, forms=None):
    """
    Check submitted inquiry fields against the service's form.
    Returns (errors, cleaned) where cleaned holds only known fields, sanitized.
    """
    form = get_form(service, forms)
    errors = []
    submitted = {}

    for field in form.get('fields', []):
        name = field['name']
        value = data.get(name)
        if isinstance(value, str):
            value = value.strip()

        if value in (None, ''):
            if field.get('required'):
                errors.append(f"{field.get('label', name)} is required")
            continue

        if not isinstance(value, str):
            errors.append(f"{field.get('label', name)} must be text")
            continue
        if field.get('type') in CHOICE_TYPES and value not in field.get('options', []):
            errors.append(f"{field.get('label', name)} must be one of the listed options")
            continue
        if contains_xss(value):
            errors.append(f"{field.get('label', name)} contains disallowed content")
            continue
        submitted[name] = value

    return errors, sanitize_form_data(submitted)
