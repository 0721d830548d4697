import pytest
from pydantic import ValidationError
from sqlalchemy.engine import make_url

from openenc.config import ImportSettings, database_url_from_env, load_environment

ENV_VARS = ('DATABASE_URL', 'DB_NAME', 'DB_USER', 'DB_PASSWORD', 'DB_HOST', 'DB_PORT')


@pytest.fixture
def clean_env(monkeypatch):
    for var in ENV_VARS:
        # setenv first so the original value is restored after the test
        monkeypatch.setenv(var, "")
        monkeypatch.delenv(var)
    return monkeypatch


# --- ImportSettings ---

def test_settings_defaults(tmp_path):
    settings = ImportSettings(input_dir=str(tmp_path), database_url='postgresql://enc@localhost/enc')
    assert settings.input_dir == tmp_path
    assert (settings.max_connections, settings.min_connections, settings.parallel_enc) == (20, 5, 10)
    assert settings.force_reimport is False
    assert settings.prune_superseded is True


def test_settings_parallelism_must_stay_below_pool(tmp_path):
    with pytest.raises(ValidationError, match="parallel_enc"):
        ImportSettings(input_dir=tmp_path, database_url='postgresql://enc@localhost/enc',
                       max_connections=10, parallel_enc=10)


def test_settings_min_above_max(tmp_path):
    with pytest.raises(ValidationError, match="min_connections"):
        ImportSettings(input_dir=tmp_path, database_url='postgresql://enc@localhost/enc',
                       max_connections=4, min_connections=8, parallel_enc=2)


@pytest.mark.parametrize('field', ['max_connections', 'min_connections', 'parallel_enc'])
def test_settings_counts_positive(tmp_path, field):
    with pytest.raises(ValidationError):
        ImportSettings(input_dir=tmp_path, database_url='postgresql://enc@localhost/enc', **{field: 0})


def test_settings_rejects_non_postgres_url(tmp_path):
    with pytest.raises(ValidationError, match="PostgreSQL"):
        ImportSettings(input_dir=tmp_path, database_url='sqlite:///enc.db')


# --- database_url_from_env ---

def test_database_url_env(clean_env):
    clean_env.setenv('DATABASE_URL', 'postgresql://enc:secret@db:5433/charts')
    assert database_url_from_env() == 'postgresql://enc:secret@db:5433/charts'


def test_database_url_from_parts(clean_env):
    clean_env.setenv('DB_NAME', 'charts')
    clean_env.setenv('DB_USER', 'enc')
    clean_env.setenv('DB_PASSWORD', 'secret')
    clean_env.setenv('DB_HOST', 'db')
    clean_env.setenv('DB_PORT', '5433')
    assert database_url_from_env() == 'postgresql+psycopg2://enc:secret@db:5433/charts'


def test_database_url_defaults_host_and_port(clean_env):
    clean_env.setenv('DB_NAME', 'charts')
    clean_env.setenv('DB_USER', 'enc')
    assert database_url_from_env() == 'postgresql+psycopg2://enc@localhost:5432/charts'


def test_database_url_explicit_parts_override_env(clean_env):
    clean_env.setenv('DATABASE_URL', 'postgresql://other@elsewhere/other')
    clean_env.setenv('DB_USER', 'enc')
    url = database_url_from_env(db_name='charts', db_host='10.0.0.5')
    assert url == 'postgresql+psycopg2://enc@10.0.0.5:5432/charts'


def test_database_url_not_configured(clean_env):
    assert database_url_from_env() is None


def test_load_environment_file(clean_env, tmp_path):
    env_file = tmp_path / '.env'
    env_file.write_text("DB_NAME=charts\nDB_USER=enc\n")
    assert load_environment(env_file) is True
    assert database_url_from_env() == 'postgresql+psycopg2://enc@localhost:5432/charts'


def test_database_url_escapes_credentials(clean_env):
    url = database_url_from_env(db_name='charts', db_user='enc', db_password='p@ss/w#rd', db_host='db')
    parsed = make_url(url)
    assert parsed.host == 'db'
    assert parsed.port == 5432
    assert parsed.password == 'p@ss/w#rd'
    assert parsed.database == 'charts'
