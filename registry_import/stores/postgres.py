"""
PostgreSQL backend.

All four collaborators share one ThreadedConnectionPool (reconciliation
workers run concurrently). Each call runs in its own transaction via
get_db(): commit on success, rollback on error.

Company fields are stored as JSONB and merge-patched with `||`.
Responsibility links use a multi-row INSERT ... ON CONFLICT upsert.
"""

import logging
from contextlib import contextmanager
from typing import Any, Dict, List, Optional

from psycopg2 import errors as pg_errors
from psycopg2.extras import Json, RealDictCursor, execute_values
from psycopg2.pool import ThreadedConnectionPool

from ..errors import StoreError
from .base import (
    BatchCreateResult,
    Company,
    CompanyRegistry,
    Department,
    DepartmentDirectory,
    LinkStore,
    Person,
    PersonDirectory,
    PersonProfile,
    ResponsibilityLink,
)

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS import_companies (
    id          BIGSERIAL PRIMARY KEY,
    code        TEXT NOT NULL UNIQUE,
    fields      JSONB NOT NULL DEFAULT '{}'::jsonb,
    created_at  TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at  TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS import_departments (
    id          BIGSERIAL PRIMARY KEY,
    name        TEXT NOT NULL,
    created_at  TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS import_persons (
    id              BIGSERIAL PRIMARY KEY,
    name            TEXT NOT NULL,
    email           TEXT NOT NULL UNIQUE,
    password_hash   TEXT NOT NULL,
    department_id   BIGINT REFERENCES import_departments(id),
    role            TEXT NOT NULL DEFAULT 'usuario',
    active          BOOLEAN NOT NULL DEFAULT TRUE,
    created_at      TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS import_responsibility_links (
    company_id      BIGINT NOT NULL REFERENCES import_companies(id),
    department_id   BIGINT NOT NULL REFERENCES import_departments(id),
    person_id       BIGINT REFERENCES import_persons(id),
    updated_at      TIMESTAMPTZ NOT NULL DEFAULT now(),
    PRIMARY KEY (company_id, department_id)
);
"""

DROP_SQL = """
DROP TABLE IF EXISTS import_responsibility_links;
DROP TABLE IF EXISTS import_persons;
DROP TABLE IF EXISTS import_departments;
DROP TABLE IF EXISTS import_companies;
"""


def hash_password(password: str) -> str:
    import bcrypt
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def _company(row) -> Company:
    return Company(row["id"], row["code"], dict(row["fields"] or {}))


def _person(row) -> Person:
    return Person(row["id"], row["name"], row["email"], row["department_id"],
                  row["role"], row["active"])


class _Collaborator:

    def __init__(self, store: "PostgresStore"):
        self._store = store

    def _db(self):
        return self._store.get_db()


class PostgresCompanyRegistry(_Collaborator, CompanyRegistry):

    def get_by_code(self, code: str) -> Optional[Company]:
        with self._db() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT id, code, fields FROM import_companies WHERE code = %s", (code,))
                row = cur.fetchone()
        return _company(row) if row else None

    def insert(self, code: str, fields: Dict[str, Any]) -> Company:
        with self._db() as conn:
            with conn.cursor() as cur:
                cur.execute("""
                    INSERT INTO import_companies (code, fields)
                    VALUES (%s, %s)
                    ON CONFLICT (code) DO NOTHING
                    RETURNING id, code, fields
                """, (code, Json(fields)))
                row = cur.fetchone()
                if row is None:
                    cur.execute("SELECT id, code, fields FROM import_companies WHERE code = %s", (code,))
                    row = cur.fetchone()
        return _company(row)

    def update(self, company_id: Any, fields: Dict[str, Any]) -> Company:
        with self._db() as conn:
            with conn.cursor() as cur:
                cur.execute("""
                    UPDATE import_companies
                    SET fields = fields || %s, updated_at = now()
                    WHERE id = %s
                    RETURNING id, code, fields
                """, (Json(fields), company_id))
                row = cur.fetchone()
        if row is None:
            raise StoreError(f"company {company_id} not found", status=404)
        return _company(row)


class PostgresDepartmentDirectory(_Collaborator, DepartmentDirectory):

    def list(self) -> List[Department]:
        with self._db() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT id, name FROM import_departments ORDER BY id")
                return [Department(r["id"], r["name"]) for r in cur.fetchall()]

    def create(self, name: str) -> Department:
        with self._db() as conn:
            with conn.cursor() as cur:
                cur.execute("INSERT INTO import_departments (name) VALUES (%s) RETURNING id, name", (name,))
                row = cur.fetchone()
        return Department(row["id"], row["name"])


class PostgresPersonDirectory(_Collaborator, PersonDirectory):

    _COLUMNS = "id, name, email, department_id, role, active"

    def list(self) -> List[Person]:
        with self._db() as conn:
            with conn.cursor() as cur:
                cur.execute(f"SELECT {self._COLUMNS} FROM import_persons ORDER BY id")
                return [_person(r) for r in cur.fetchall()]

    def _insert(self, cur, profile: PersonProfile):
        cur.execute(f"""
            INSERT INTO import_persons (name, email, password_hash, department_id, role, active)
            VALUES (%s, %s, %s, %s, %s, %s)
            ON CONFLICT (email) DO NOTHING
            RETURNING {self._COLUMNS}
        """, (profile.name, profile.email.strip().lower(), hash_password(profile.password),
              profile.department_id, profile.role, profile.active))
        return cur.fetchone()

    def create(self, profile: PersonProfile) -> Person:
        with self._db() as conn:
            with conn.cursor() as cur:
                row = self._insert(cur, profile)
        if row is None:
            raise StoreError(f"email already registered: {profile.email}", status=409)
        return _person(row)

    def create_batch(self, profiles: List[PersonProfile]) -> List[BatchCreateResult]:
        """All profiles in one transaction; existing e-mails are reported, not duplicated."""
        results = []
        with self._db() as conn:
            with conn.cursor() as cur:
                for profile in profiles:
                    row = self._insert(cur, profile)
                    if row is not None:
                        results.append(BatchCreateResult(profile.name, row["email"], row["id"], "created"))
                        continue
                    cur.execute("SELECT id FROM import_persons WHERE email = %s",
                                (profile.email.strip().lower(),))
                    existing = cur.fetchone()
                    results.append(BatchCreateResult(profile.name, profile.email,
                                                     existing["id"] if existing else None,
                                                     "existing" if existing else "failed"))
        return results


class PostgresLinkStore(_Collaborator, LinkStore):

    def list_by_company(self, company_id: Any) -> List[ResponsibilityLink]:
        with self._db() as conn:
            with conn.cursor() as cur:
                cur.execute("""
                    SELECT company_id, department_id, person_id
                    FROM import_responsibility_links
                    WHERE company_id = %s
                """, (company_id,))
                return [ResponsibilityLink(r["company_id"], r["department_id"], r["person_id"])
                        for r in cur.fetchall()]

    def upsert_many(self, links: List[ResponsibilityLink]) -> None:
        if not links:
            return
        values = [(link.company_id, link.department_id, link.person_id) for link in links]
        with self._db() as conn:
            with conn.cursor() as cur:
                execute_values(cur, """
                    INSERT INTO import_responsibility_links (company_id, department_id, person_id)
                    VALUES %s
                    ON CONFLICT (company_id, department_id)
                    DO UPDATE SET person_id = EXCLUDED.person_id, updated_at = now()
                """, values)


class PostgresStore:
    """
    Usage:
        store = PostgresStore()          # settings from db_config
        store.create_schema()
        pipeline = ImportPipeline.from_store(store)
        ...
        store.close()
    """

    def __init__(self, db_config: Dict[str, Any] = None, minconn: int = None, maxconn: int = None):
        if db_config is None or minconn is None or maxconn is None:
            import db_config as settings
            db_config = db_config or settings.DB_CONFIG
            minconn = minconn if minconn is not None else settings.DB_POOL_MIN
            maxconn = maxconn if maxconn is not None else settings.DB_POOL_MAX
        self._pool = ThreadedConnectionPool(
            minconn=minconn,
            maxconn=maxconn,
            cursor_factory=RealDictCursor,
            **db_config,
        )
        self.companies = PostgresCompanyRegistry(self)
        self.departments = PostgresDepartmentDirectory(self)
        self.people = PostgresPersonDirectory(self)
        self.links = PostgresLinkStore(self)

    @contextmanager
    def get_db(self):
        """Yield a pooled connection; commit on success, rollback on error."""
        conn = self._pool.getconn()
        try:
            yield conn
            conn.commit()
        except pg_errors.UniqueViolation as e:
            conn.rollback()
            raise StoreError(str(e).strip(), status=409) from e
        except Exception:
            conn.rollback()
            raise
        finally:
            self._pool.putconn(conn)

    def create_schema(self):
        with self.get_db() as conn:
            with conn.cursor() as cur:
                cur.execute(SCHEMA_SQL)
        logger.info("Import schema ready")

    def drop_schema(self):
        with self.get_db() as conn:
            with conn.cursor() as cur:
                cur.execute(DROP_SQL)

    def close(self):
        self._pool.closeall()


__all__ = ["PostgresStore", "SCHEMA_SQL", "hash_password"]
