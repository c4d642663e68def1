"""
PostgreSQL persistence layer for the Membership service.
"""

from typing import Dict, Any, Optional
from datetime import datetime

import asyncpg
from shared.logging import get_logger
from shared.errors import ConflictError, DependencyError, InvalidArgumentError
from ..membership.models import User, UserRole
from .base import UserStore


# Columns callers may write; id and created_at are owned by the database
WRITABLE_COLUMNS = (
    "username", "password", "email", "phone", "avatar", "gender", "bio",
    "user_role", "membership_start_time", "membership_end_time",
)


class PostgreSQLUserStore(UserStore):
    """PostgreSQL persistence layer for users."""

    def __init__(self, dsn: str):
        self.dsn = dsn
        self.logger = get_logger("membership.persistence.postgres")
        self.pool: Optional[asyncpg.Pool] = None

    async def start(self):
        """Start the persistence layer."""
        try:
            self.pool = await asyncpg.create_pool(
                self.dsn,
                min_size=2,
                max_size=10,
                command_timeout=30
            )

            await self._create_tables()

            self.logger.info("PostgreSQL persistence started")

        except (OSError, asyncpg.PostgresError) as e:
            self.logger.error("Failed to start PostgreSQL persistence", error=str(e))
            raise DependencyError("postgres", str(e))

    async def stop(self):
        """Stop the persistence layer."""
        if self.pool:
            await self.pool.close()
            self.logger.info("PostgreSQL persistence stopped")

    async def _create_tables(self):
        """Create database tables."""
        async with self.pool.acquire() as conn:
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    id BIGSERIAL PRIMARY KEY,
                    username VARCHAR(255) NOT NULL UNIQUE,
                    password VARCHAR(255) NOT NULL,
                    email VARCHAR(255) UNIQUE,
                    phone VARCHAR(64) UNIQUE,
                    avatar TEXT,
                    gender VARCHAR(32),
                    bio TEXT,
                    user_role VARCHAR(16) NOT NULL DEFAULT 'NORMAL',
                    membership_start_time TIMESTAMP WITH TIME ZONE,
                    membership_end_time TIMESTAMP WITH TIME ZONE,
                    created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
                    updated_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
                    CONSTRAINT membership_window CHECK (
                        membership_start_time IS NULL
                        OR membership_end_time IS NULL
                        OR membership_start_time <= membership_end_time
                    )
                );
            """)

            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_users_role ON users(user_role);
            """)
            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_users_created ON users(created_at);
            """)

    async def get(self, user_id: int) -> Optional[User]:
        """Load a user from the database."""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM users WHERE id = $1", user_id)
        return self._row_to_user(row) if row else None

    async def update(self, user_id: int, fields: Dict[str, Any]) -> User:
        """Apply all fields in a single UPDATE statement."""
        columns, values = self._prepare_columns(fields)
        if not columns:
            raise InvalidArgumentError("No fields to update")

        assignments = ", ".join(f"{column} = ${index}" for index, column in enumerate(columns, start=2))
        query = f"""
            UPDATE users SET {assignments}, updated_at = NOW()
            WHERE id = $1
            RETURNING *
        """

        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(query, user_id, *values)
        except asyncpg.UniqueViolationError as e:
            raise ConflictError("Unique constraint violated", details={"constraint": getattr(e, "constraint_name", None)})
        except asyncpg.CheckViolationError as e:
            raise ConflictError("Membership window rejected", details={"constraint": getattr(e, "constraint_name", None)})

        if row is None:
            raise ConflictError("User does not exist", details={"user_id": user_id})

        self.logger.debug("User updated", user_id=user_id, fields=list(columns))
        return self._row_to_user(row)

    async def create(self, fields: Dict[str, Any]) -> User:
        """Insert a user."""
        columns, values = self._prepare_columns(fields)
        placeholders = ", ".join(f"${index}" for index in range(1, len(columns) + 1))
        query = f"""
            INSERT INTO users ({", ".join(columns)})
            VALUES ({placeholders})
            RETURNING *
        """

        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(query, *values)
        except asyncpg.UniqueViolationError as e:
            raise ConflictError("Unique constraint violated", details={"constraint": getattr(e, "constraint_name", None)})

        self.logger.info("User created", user_id=row["id"], username=row["username"])
        return self._row_to_user(row)

    async def delete(self, user_id: int) -> bool:
        """Delete a user from the database."""
        async with self.pool.acquire() as conn:
            result = await conn.execute("DELETE FROM users WHERE id = $1", user_id)

        if result == "DELETE 1":
            self.logger.info("User deleted", user_id=user_id)
            return True

        self.logger.warning("User not found for deletion", user_id=user_id)
        return False

    async def find_by_username(self, username: str) -> Optional[User]:
        return await self._find_one("username", username)

    async def find_by_email(self, email: str) -> Optional[User]:
        return await self._find_one("email", email)

    async def find_by_phone(self, phone: str) -> Optional[User]:
        return await self._find_one("phone", phone)

    async def count(self) -> int:
        async with self.pool.acquire() as conn:
            return await conn.fetchval("SELECT COUNT(*) FROM users") or 0

    async def count_by_role(self, role: UserRole) -> int:
        async with self.pool.acquire() as conn:
            return await conn.fetchval("SELECT COUNT(*) FROM users WHERE user_role = $1", role.value) or 0

    async def count_created_after(self, moment: datetime) -> int:
        async with self.pool.acquire() as conn:
            return await conn.fetchval("SELECT COUNT(*) FROM users WHERE created_at > $1", moment) or 0

    async def _find_one(self, column: str, value: str) -> Optional[User]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(f"SELECT * FROM users WHERE {column} = $1", value)
        return self._row_to_user(row) if row else None

    def _prepare_columns(self, fields: Dict[str, Any]):
        unknown = set(fields) - set(WRITABLE_COLUMNS)
        if unknown:
            raise InvalidArgumentError("Unknown user fields", details={"fields": sorted(unknown)})

        columns = [column for column in WRITABLE_COLUMNS if column in fields]
        values = []
        for column in columns:
            value = fields[column]
            if isinstance(value, UserRole):
                value = value.value
            values.append(value)
        return columns, values

    def _row_to_user(self, row) -> User:
        """Convert database row to User object."""
        return User(
            id=row['id'],
            username=row['username'],
            password=row['password'],
            email=row['email'],
            phone=row['phone'],
            avatar=row['avatar'],
            gender=row['gender'],
            bio=row['bio'],
            user_role=UserRole(row['user_role']),
            membership_start_time=row['membership_start_time'],
            membership_end_time=row['membership_end_time'],
            created_at=row['created_at'],
            updated_at=row['updated_at']
        )

    async def health_check(self) -> bool:
        """Check database health."""
        try:
            async with self.pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
                return True
        except Exception:
            return False
