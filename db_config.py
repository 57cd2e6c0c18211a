"""
Shared database configuration for the import engine.
Reads credentials from a .env file at the project root or the environment.
"""
import os
from pathlib import Path


def load_env(path=None):
    """Load KEY=VALUE lines into os.environ without overriding existing values."""
    env_path = Path(path) if path else Path(__file__).resolve().parent / '.env'
    if not env_path.exists():
        return
    with open(env_path, encoding='utf-8') as f:
        for line in f:
            line = line.strip()
            if line and not line.startswith('#') and '=' in line:
                key, _, value = line.partition('=')
                os.environ.setdefault(key.strip(), value.strip().strip('"').strip("'"))


load_env()

DB_HOST = os.environ.get('DB_HOST', 'localhost')
DB_PORT = int(os.environ.get('DB_PORT', '5432'))
DB_NAME = os.environ.get('DB_NAME', 'registry_import')
DB_USER = os.environ.get('DB_USER', 'postgres')
DB_PASSWORD = os.environ.get('DB_PASSWORD', '')

DB_POOL_MIN = int(os.environ.get('DB_POOL_MIN', '1'))
DB_POOL_MAX = int(os.environ.get('DB_POOL_MAX', '10'))

DB_CONFIG = {
    'host': DB_HOST,
    'port': DB_PORT,
    'database': DB_NAME,
    'user': DB_USER,
    'password': DB_PASSWORD,
}


def get_connection(cursor_factory=None):
    """Get a single database connection using shared config."""
    import psycopg2
    kwargs = dict(DB_CONFIG)
    if cursor_factory:
        kwargs['cursor_factory'] = cursor_factory
    return psycopg2.connect(**kwargs)
