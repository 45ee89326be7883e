import pytest

from folio.config import Settings, load_settings


def test_defaults():
    settings = load_settings(environ={})
    assert settings.rate_limit_max == 50
    assert settings.rate_limit_window_seconds == 900
    assert settings.audit_log_capacity == 1000
    assert settings.max_payload_bytes == 10 * 1024 * 1024
    assert settings.backend == 'auto'
    assert not settings.github_configured


def test_environment_overrides():
    settings = load_settings(environ={
        'ADMIN_SECRET': 's3cret',
        'GITHUB_TOKEN': 'ghp_x',
        'GITHUB_OWNER': 'someone',
        'GITHUB_REPO': 'site',
        'RATE_LIMIT_MAX': '10',
        'AUDIT_LOG_CAPACITY': '',
    })
    assert settings.admin_secret == 's3cret'
    assert settings.rate_limit_max == 10
    assert settings.audit_log_capacity == 1000
    assert settings.github_configured


def test_yaml_file_then_environment(tmp_path):
    config_file = tmp_path / 'folio.yaml'
    config_file.write_text(
        'rate_limit_max: 7\n'
        'GITHUB_REPO: from-file\n'
        'github_branch: main\n'
        'unknown_key: 1\n',
        encoding='utf-8'
    )
    settings = load_settings(environ={'FOLIO_CONFIG': str(config_file), 'GITHUB_REPO': 'from-env'})

    assert settings.rate_limit_max == 7
    assert settings.github_branch == 'main'
    assert settings.github_repo == 'from-env'


def test_missing_config_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_settings(environ={'FOLIO_CONFIG': str(tmp_path / 'nope.yaml')})


def test_config_file_must_be_a_mapping(tmp_path):
    config_file = tmp_path / 'folio.yaml'
    config_file.write_text('- just\n- a list\n', encoding='utf-8')
    with pytest.raises(ValueError):
        load_settings(environ={}, config_path=str(config_file))


def test_bad_integer_names_the_variable():
    with pytest.raises(ValueError, match='RATE_LIMIT_MAX'):
        load_settings(environ={'RATE_LIMIT_MAX': 'fifty'})


def test_bad_backend_name():
    with pytest.raises(ValueError):
        Settings(backend='s3')


def test_unknown_setting():
    with pytest.raises(ValueError):
        Settings(colour='blue')


def test_as_dict_redacts_secrets():
    data = Settings(admin_secret='s3cret', github_token='ghp_x').as_dict()
    assert data['admin_secret'] == '***'
    assert data['github_token'] == '***'
    assert data['admin_password_hash'] == ''
