import logging
from typing import Optional, Sequence

import pandas as pd
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine, make_url

from ..core.layer_schema import LayerDefinition, create_unified_mvt_function_sql
from ..core.persistence import CATALOG_TABLE, COVERAGE_SENTINEL_SQL, catalog_metadata

logger = logging.getLogger(__name__)


class PostGISConnector:
    """Owns the SQLAlchemy engine (and its connection pool) and prepares the chart schema."""

    def __init__(self, database_url: str, max_connections: int = 20, min_connections: int = 5,
                 pool_timeout: float = 30.0, pool_recycle: int = 1800):
        if min_connections > max_connections:
            raise ValueError("min_connections cannot exceed max_connections.")
        self.database_url = database_url
        self.max_connections = max_connections
        self.min_connections = min_connections
        self.pool_timeout = pool_timeout
        self.pool_recycle = pool_recycle
        self.engine: Optional[Engine] = None

    @classmethod
    def from_settings(cls, settings) -> 'PostGISConnector':
        return cls(
            settings.database_url,
            max_connections=settings.max_connections,
            min_connections=settings.min_connections,
            pool_timeout=settings.pool_timeout,
            pool_recycle=settings.pool_recycle,
        )

    @property
    def safe_url(self) -> str:
        """Database URL with the password masked, for logging."""
        return make_url(self.database_url).render_as_string(hide_password=True)

    def connect(self) -> Engine:
        """Creates the engine. The pool keeps `min_connections` open and grows up to `max_connections`."""
        if self.engine:
            return self.engine
        try:
            self.engine = create_engine(
                self.database_url,
                pool_size=self.min_connections,
                max_overflow=self.max_connections - self.min_connections,
                pool_timeout=self.pool_timeout,
                pool_recycle=self.pool_recycle,
                pool_pre_ping=True,
            )
            logger.info(f"Connection pool ready for {self.safe_url} "
                        f"({self.min_connections}-{self.max_connections} connections)")
        except Exception as e:
            logger.error(f"Database connection failed: {e}")
            raise
        return self.engine

    def test_connection(self) -> str:
        """Round trip to the server. Returns the PostGIS version string."""
        self.connect()
        with self.engine.connect() as connection:
            return connection.execute(text("SELECT PostGIS_Full_Version()")).scalar_one()

    def check_and_prepare(self, layers: Sequence[LayerDefinition]):
        """
        Provisions the schema in one transaction: the postgis extension, the
        catalog table, every layer table with its indexes and tile function,
        and the unified `enc_mvt` tile function. Every statement is idempotent.
        """
        self.connect()
        with self.engine.begin() as connection:
            connection.execute(text("CREATE EXTENSION IF NOT EXISTS postgis"))
            catalog_metadata.create_all(connection, checkfirst=True)

            for layer in layers:
                logger.debug(f"Preparing table '{layer.table}' for {layer.s57_name}")
                connection.execute(text(layer.create_table_sql()))
                for statement in layer.create_indexes_sql():
                    connection.execute(text(statement))
                connection.execute(text(layer.create_mvt_function_sql()))

            if layers:
                connection.execute(text(create_unified_mvt_function_sql(layers)))
        logger.info(f"Schema is ready: {CATALOG_TABLE} + {', '.join(l.table for l in layers)}")

    def get_catalog_summary(self) -> pd.DataFrame:
        """
        One row per imported chart.

        Returns:
            pd.DataFrame: columns ['enc_name', 'edition', 'update_number',
            'compilation_scale', 'coverage_type', 'coverage_pending'].
        """
        self.connect()
        query = text(f"""
            SELECT enc_name, edition, update_number, compilation_scale,
                   GeometryType(coverage) AS coverage_type,
                   ST_Equals(coverage, {COVERAGE_SENTINEL_SQL}) AS coverage_pending
            FROM {CATALOG_TABLE}
            ORDER BY enc_name
        """)
        with self.engine.connect() as connection:
            return pd.read_sql(query, connection)

    def get_layer_summary(self, layers: Sequence[LayerDefinition]) -> pd.DataFrame:
        """Feature and chart counts per layer table."""
        self.connect()
        summary_data = []
        with self.engine.connect() as connection:
            for layer in layers:
                try:
                    row = connection.execute(
                        text(f"SELECT COUNT(*) AS features, COUNT(DISTINCT enc_name) AS charts FROM {layer.table}")
                    ).one()
                    summary_data.append({'layer': layer.s57_name, 'table': layer.table,
                                         'feature_count': row.features, 'chart_count': row.charts})
                except Exception as e:
                    logger.warning(f"Could not get count for {layer.table}: {e}")
                    connection.rollback()
                    summary_data.append({'layer': layer.s57_name, 'table': layer.table,
                                         'feature_count': 'Error', 'chart_count': 'Error'})
        return pd.DataFrame(summary_data)

    def dispose(self):
        """Closes every pooled connection."""
        if self.engine is not None:
            self.engine.dispose()
            self.engine = None
