import pytest

from folio.validation import (contains_xss, find_xss, sanitize_filename, sanitize_form_data,
                              sanitize_text, sanitize_url, serialize_document, validate_blog,
                              validate_document, validate_project)


@pytest.mark.parametrize('value, rule', [
    ('<script>alert(1)</script>', 'script-tag'),
    ('<SCRIPT src="x.js">', 'script-tag'),
    ('<iframe src="https://evil.example">', 'iframe-tag'),
    ('<img src=x onerror=alert(1)>', 'event-handler'),
    ('<a href="javascript:alert(1)">x</a>', 'javascript-url'),
    ('eval (payload)', 'eval-call'),
    ('setTimeout(run, 10)', 'settimeout-call'),
    ('setInterval(run, 10)', 'setinterval-call'),
    ('new Function("return 1")', 'function-constructor'),
])
def test_disallowed_patterns_are_detected(value, rule):
    assert find_xss(value) == rule


@pytest.mark.parametrize('value', [
    'A portfolio site built with Flask',
    'Evaluation of online learning',
    'https://example.com/projects?id=3',
    'Function and form',
])
def test_ordinary_text_passes(value):
    assert not contains_xss(value)


def test_valid_document_has_no_violations():
    assert validate_document({'items': [], 'title': 'Gallery'}) == []


def test_document_must_be_an_object():
    violations = validate_document(['not', 'an', 'object'])
    assert violations == [{'path': '$', 'rule': 'type', 'message': 'Document must be a JSON object'}]


def test_nested_script_is_reported_with_its_path():
    doc = {'items': [{'title': 'ok'}, {'title': '<script>alert(1)</script>'}]}
    violations = validate_document(doc)
    assert len(violations) == 1
    assert violations[0]['path'] == '$.items[1].title'
    assert violations[0]['rule'] == 'script-tag'


def test_keys_are_screened_too():
    violations = validate_document({'onclick=': 'x'})
    assert violations[0]['rule'] == 'event-handler'


def test_oversize_document_is_rejected():
    doc = {'blob': 'x' * 5000}
    violations = validate_document(doc, max_bytes=1000)
    assert [v['rule'] for v in violations] == ['size']


def test_deeply_nested_document_is_rejected():
    nested = []
    for _ in range(5000):
        nested = [nested]
    violations = validate_document({'a': nested})
    assert [v['rule'] for v in violations] == ['depth']


def test_size_is_measured_on_the_committed_serialization():
    doc = {'items': ['a', 'b']}
    limit = len(serialize_document(doc).encode('utf-8'))
    assert validate_document(doc, max_bytes=limit) == []
    assert validate_document(doc, max_bytes=limit - 1)[0]['rule'] == 'size'


def test_project_records_are_checked_for_projects_section():
    doc = {'items': [{'title': 'My App', 'summary': 'A short app summary', 'link': 'ftp://nope'}]}
    violations = validate_document(doc, section='projects')
    assert [v['message'] for v in violations] == ['Project link must be a valid URL']
    assert validate_document(doc, section='gallery') == []


def test_validate_project():
    assert validate_project({'title': 'My App', 'summary': 'Does useful things', 'tech': ['python']}) == []
    errors = validate_project({'title': 'ab', 'summary': 'short', 'tech': 'python'})
    assert errors == [
        'Project title must be at least 3 characters',
        'Project summary must be at least 10 characters',
        'Technologies must be an array',
    ]


def test_validate_blog():
    post = {'title': 'Hello world', 'content': 'x' * 60, 'slug': 'hello-world', 'image': 'data:image/png;base64,AA'}
    assert validate_blog(post) == []
    errors = validate_blog({'title': 'Hi', 'content': 'short', 'slug': 'Hello World', 'image': 'nope'})
    assert len(errors) == 4


def test_sanitize_text_strips_patterns_and_truncates():
    assert sanitize_text('  hello <script>alert(1)</script> world  ') == 'hello alert(1) world'
    assert sanitize_text('abcdef', max_length=3) == 'abc'
    assert sanitize_text('') == ''


def test_sanitize_url_only_keeps_http():
    assert sanitize_url('https://example.com/a') == 'https://example.com/a'
    assert sanitize_url('javascript:alert(1)') == ''
    assert sanitize_url('not a url') == ''


def test_sanitize_filename():
    assert sanitize_filename('../../etc/passwd') == '....etcpasswd'
    assert sanitize_filename('photo 1.png') == 'photo1.png'


def test_sanitize_form_data_by_field_name():
    cleaned = sanitize_form_data({
        'projectLink': 'javascript:alert(1)',
        'imageUrl': 'https://cdn.example.com/a.png',
        'image': 'data:image/png;base64,AA',
        'filename': 'my file.png',
        'tags': ['<script>x', 'ok'],
        'count': 3,
    })
    assert cleaned == {
        'projectLink': '',
        'imageUrl': 'https://cdn.example.com/a.png',
        'image': 'data:image/png;base64,AA',
        'filename': 'myfile.png',
        'tags': ['x', 'ok'],
        'count': 3,
    }
