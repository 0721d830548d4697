"""
config.py

Import settings, validated with pydantic, and database URL resolution from
the environment (a `.env` file is loaded first when present).
"""

import logging
import os
from pathlib import Path
from typing import Optional, Union

from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel, Field, field_validator, model_validator
from sqlalchemy.engine import URL

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONNECTIONS = 20
DEFAULT_MIN_CONNECTIONS = 5
DEFAULT_PARALLEL_ENC = 10


class ImportSettings(BaseModel):
    """Settings for one import run."""
    input_dir: Path
    database_url: str
    max_connections: int = Field(DEFAULT_MAX_CONNECTIONS, ge=1)
    min_connections: int = Field(DEFAULT_MIN_CONNECTIONS, ge=1)
    parallel_enc: int = Field(DEFAULT_PARALLEL_ENC, ge=1)
    force_reimport: bool = False
    prune_superseded: bool = True
    pool_timeout: float = Field(30.0, gt=0)
    pool_recycle: int = 1800

    @field_validator('database_url')
    @classmethod
    def check_database_url(cls, value: str) -> str:
        value = value.strip()
        if not value.startswith('postgresql'):
            raise ValueError("database_url must be a PostgreSQL URL (postgresql://... or postgresql+psycopg2://...)")
        return value

    @model_validator(mode='after')
    def check_pool_bounds(self) -> 'ImportSettings':
        if self.min_connections > self.max_connections:
            raise ValueError(f"min_connections ({self.min_connections}) cannot exceed "
                             f"max_connections ({self.max_connections})")
        # Each worker holds one connection for its chart transaction and needs
        # headroom for the catalog checks and the coverage fallback
        if self.parallel_enc >= self.max_connections:
            raise ValueError(f"parallel_enc ({self.parallel_enc}) must be lower than "
                             f"max_connections ({self.max_connections})")
        return self


def load_environment(env_file: Optional[Union[str, Path]] = None) -> bool:
    """Loads `.env` from the working directory (or the given file) into the process environment without overriding it."""
    if env_file is not None:
        return load_dotenv(env_file)
    return load_dotenv(find_dotenv(usecwd=True))


def database_url_from_env(db_name: Optional[str] = None, db_user: Optional[str] = None,
                          db_password: Optional[str] = None, db_host: Optional[str] = None,
                          db_port: Optional[str] = None) -> Optional[str]:
    """
    Resolves the database URL.

    Explicit parameters win over DB_NAME / DB_USER / DB_PASSWORD / DB_HOST /
    DB_PORT. When none of those are given at all, DATABASE_URL is used as is.

    Returns:
        Optional[str]: A postgresql+psycopg2 URL, or None if nothing is configured.
    """
    explicit = any(v for v in (db_name, db_user, db_password, db_host, db_port))
    if not explicit and os.getenv('DATABASE_URL'):
        return os.getenv('DATABASE_URL')

    db_params = {
        'dbname': db_name or os.getenv('DB_NAME'),
        'user': db_user or os.getenv('DB_USER'),
        'password': db_password or os.getenv('DB_PASSWORD'),
        'host': db_host or os.getenv('DB_HOST') or 'localhost',
        'port': db_port or os.getenv('DB_PORT') or '5432',
    }
    if not db_params['dbname'] or not db_params['user']:
        logger.debug("DB_NAME/DB_USER not set, no database URL configured")
        return None

    url = URL.create(
        'postgresql+psycopg2',
        username=db_params['user'],
        password=db_params['password'] or None,
        host=db_params['host'],
        port=int(db_params['port']),
        database=db_params['dbname'],
    )
    return url.render_as_string(hide_password=False)
