"""
Database configuration module.
DATABASE_URL selects the PostgreSQL backend; without it the service runs on
the in-process stores.
"""

import os
import logging
from urllib.parse import urlparse, unquote

logger = logging.getLogger(__name__)

DEFAULT_CONNECT_TIMEOUT = 5


class DBConfig:
    """Database configuration parsed from DATABASE_URL"""

    def __init__(self, database_url: str | None = None):
        self.database_url = database_url if database_url is not None else os.getenv("DATABASE_URL")
        self.connect_timeout = int(os.getenv("DB_CONNECT_TIMEOUT", str(DEFAULT_CONNECT_TIMEOUT)))

        if self.database_url:
            try:
                parsed = urlparse(self.database_url)
                logger.info(f"[db_config] DATABASE_URL configured: {parsed.scheme}://{parsed.username}:***@{parsed.hostname}:{parsed.port or 5432}{parsed.path}")
            except ValueError as e:
                logger.info(f"[db_config] DATABASE_URL configured (unable to parse for logging: {e})")
        else:
            logger.info("[db_config] DATABASE_URL not set - using in-process stores")

    @property
    def is_db_enabled(self) -> bool:
        return bool(self.database_url)

    def get_connection_params(self) -> dict | None:
        """
        Get psycopg2 connection parameters.
        Returns dict with host, port, database, user, password, connect_timeout.
        """
        if not self.database_url:
            return None

        try:
            parsed = urlparse(self.database_url)
        except ValueError as e:
            logger.error(f"[db_config] Failed to parse DATABASE_URL: {e}")
            return None

        if not parsed.hostname:
            return None

        params = {
            "host": parsed.hostname,
            "port": parsed.port or 5432,
            "database": parsed.path.lstrip('/') or 'postgres',
            "user": parsed.username or 'postgres',
            "connect_timeout": self.connect_timeout,
        }

        # URL-decode the password to handle special characters
        if parsed.password:
            params["password"] = unquote(parsed.password)

        return params


# Global instance
db_config = DBConfig()
