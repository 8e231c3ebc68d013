from __future__ import annotations

from typing import Any, Dict, List, Optional

from psycopg import errors
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from userhub.logging import get_logger
from userhub.storage.errors import ConstraintViolation
from userhub.storage.models import User

_USER_COLUMNS = "id, name, email, password_hash, created_at, updated_at"


class PostgresStore:
    """Postgres-backed user store."""

    def __init__(self, dsn: str, *, min_size: int = 1, max_size: int = 10) -> None:
        self.dsn = dsn
        self.logger = get_logger(__name__)
        self.pool = ConnectionPool(
            self.dsn,
            min_size=min_size,
            max_size=max_size,
            kwargs={"row_factory": dict_row, "autocommit": False},
        )
        self._ensure_user_table()

    def _connect(self):
        return self.pool.connection()

    def close(self) -> None:
        self.pool.close()

    def verify_connection(self) -> None:
        with self._connect() as conn:
            conn.execute("SELECT 1").fetchone()

    def _ensure_user_table(self) -> None:
        """Create the ``app_user`` table if it is missing."""

        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS app_user (
                    id SERIAL PRIMARY KEY,
                    name TEXT NOT NULL,
                    email TEXT NOT NULL UNIQUE,
                    password_hash TEXT NOT NULL,
                    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
                    updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
                )
                """
            )
        self.logger.info("user_table_ready")

    @staticmethod
    def _user_from_row(row: Dict[str, Any]) -> User:
        return User(
            id=int(row["id"]),
            name=row["name"],
            email=row["email"],
            password_hash=row["password_hash"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def create_user(self, name: str, email: str, password_hash: str) -> User:
        try:
            with self._connect() as conn:
                row = conn.execute(
                    f"""
                    INSERT INTO app_user (name, email, password_hash)
                    VALUES (%s, %s, %s)
                    RETURNING {_USER_COLUMNS}
                    """,
                    (name, email, password_hash),
                ).fetchone()
        except errors.UniqueViolation:
            raise ConstraintViolation("email already exists", {"field": "email"})
        return self._user_from_row(row)

    def get_user(self, user_id: int) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {_USER_COLUMNS} FROM app_user WHERE id = %s", (user_id,)
            ).fetchone()
        return self._user_from_row(row) if row else None

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {_USER_COLUMNS} FROM app_user WHERE email = %s", (email,)
            ).fetchone()
        return self._user_from_row(row) if row else None

    def email_exists(self, email: str) -> bool:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT 1 AS found FROM app_user WHERE email = %s", (email,)
            ).fetchone()
        return row is not None

    def list_users(self, limit: int = 100) -> List[User]:
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT {_USER_COLUMNS} FROM app_user ORDER BY id LIMIT %s", (limit,)
            ).fetchall()
        return [self._user_from_row(row) for row in rows]

    def update_user(
        self,
        user_id: int,
        *,
        name: Optional[str] = None,
        email: Optional[str] = None,
    ) -> Optional[User]:
        assignments: List[str] = []
        params: List[Any] = []
        if name is not None:
            assignments.append("name = %s")
            params.append(name)
        if email is not None:
            assignments.append("email = %s")
            params.append(email)
        if not assignments:
            return self.get_user(user_id)
        assignments.append("updated_at = now()")
        params.append(user_id)
        try:
            with self._connect() as conn:
                row = conn.execute(
                    f"""
                    UPDATE app_user SET {", ".join(assignments)}
                    WHERE id = %s
                    RETURNING {_USER_COLUMNS}
                    """,
                    tuple(params),
                ).fetchone()
        except errors.UniqueViolation:
            raise ConstraintViolation("email already exists", {"field": "email"})
        return self._user_from_row(row) if row else None

    def delete_user(self, user_id: int) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                f"DELETE FROM app_user WHERE id = %s RETURNING {_USER_COLUMNS}",
                (user_id,),
            ).fetchone()
        return self._user_from_row(row) if row else None
