"""
PostgreSQL store adapters.

The schema is owned by the account services; these adapters only read and
write rows through an asyncpg pool. Query errors are logged and re-raised so
the evaluator can apply its fail-open/fail-closed rules.
"""

from datetime import datetime
from typing import Any, List, Optional, Set

import asyncpg

from shared.logging import get_logger
from shared.errors import AccessLayerException
from ..models import (
    Principal,
    Repository,
    Role,
    RoleAssignment,
    Scan,
    Schedule,
    UsageRecord,
    UserRole,
    Workspace,
)
from ..plans.entitlements import Plan, ResourceType
from .base import Stores


class PostgresDatabase:
    """Connection pool shared by the adapters."""

    def __init__(self, dsn: str):
        self.dsn = dsn
        self.logger = get_logger("policy.stores.postgres")
        self.pool: Optional[asyncpg.Pool] = None

    async def start(self):
        """Start the connection pool."""
        try:
            self.pool = await asyncpg.create_pool(
                self.dsn,
                min_size=2,
                max_size=10,
                command_timeout=30
            )
            self.logger.info("PostgreSQL pool started")

        except Exception as e:
            self.logger.error("Failed to start PostgreSQL pool", error=str(e))
            raise AccessLayerException("POSTGRES_START_FAILED", str(e))

    async def stop(self):
        """Stop the connection pool."""
        if self.pool:
            await self.pool.close()
            self.logger.info("PostgreSQL pool stopped")

    async def fetch(self, query: str, *args) -> List[Any]:
        try:
            async with self.pool.acquire() as conn:
                return await conn.fetch(query, *args)
        except Exception as e:
            self.logger.error("Query failed", error=str(e))
            raise

    async def fetchrow(self, query: str, *args) -> Optional[Any]:
        try:
            async with self.pool.acquire() as conn:
                return await conn.fetchrow(query, *args)
        except Exception as e:
            self.logger.error("Query failed", error=str(e))
            raise

    async def fetchval(self, query: str, *args) -> Any:
        try:
            async with self.pool.acquire() as conn:
                return await conn.fetchval(query, *args)
        except Exception as e:
            self.logger.error("Query failed", error=str(e))
            raise

    async def execute(self, query: str, *args) -> str:
        try:
            async with self.pool.acquire() as conn:
                return await conn.execute(query, *args)
        except Exception as e:
            self.logger.error("Statement failed", error=str(e))
            raise


class PostgresPrincipalStore:

    def __init__(self, db: PostgresDatabase):
        self.db = db

    async def get(self, user_id: str) -> Optional[Principal]:
        row = await self.db.fetchrow(
            "SELECT id, role, plan, owner_id FROM users WHERE id = $1",
            user_id
        )
        if row is None:
            return None
        return Principal(
            user_id=row["id"],
            role=UserRole(row["role"]),
            plan=Plan(row["plan"]) if row["plan"] else None,
            owner_id=row["owner_id"],
        )

    async def set_plan(self, user_id: str, plan: Plan) -> None:
        await self.db.execute(
            "UPDATE users SET plan = $2, updated_at = NOW() WHERE id = $1",
            user_id, plan.value
        )


class PostgresRoleAssignmentStore:

    def __init__(self, db: PostgresDatabase):
        self.db = db

    async def list_permissions(self, user_id: str, workspace_id: Optional[str] = None) -> Set[str]:
        rows = await self.db.fetch("""
            SELECT DISTINCT rp.permission_code
            FROM user_roles ur
            JOIN role_permissions rp ON rp.role_id = ur.role_id
            WHERE ur.user_id = $1 AND ur.workspace_id IS NOT DISTINCT FROM $2
        """, user_id, workspace_id)
        return {row["permission_code"] for row in rows}

    async def get_role(self, role_id: str) -> Optional[Role]:
        row = await self.db.fetchrow(
            "SELECT id, name, description FROM roles WHERE id = $1",
            role_id
        )
        if row is None:
            return None
        codes = await self.db.fetch(
            "SELECT permission_code FROM role_permissions WHERE role_id = $1",
            role_id
        )
        return Role(
            role_id=row["id"],
            name=row["name"],
            permissions=frozenset(c["permission_code"] for c in codes),
            description=row["description"],
        )

    async def list_assignments(self, user_id: str, workspace_id: Optional[str] = None) -> List[RoleAssignment]:
        rows = await self.db.fetch("""
            SELECT user_id, role_id, workspace_id FROM user_roles
            WHERE user_id = $1 AND workspace_id IS NOT DISTINCT FROM $2
        """, user_id, workspace_id)
        return [RoleAssignment(row["user_id"], row["role_id"], row["workspace_id"]) for row in rows]

    async def add_assignment(self, assignment: RoleAssignment) -> None:
        await self.db.execute(
            "INSERT INTO user_roles (user_id, role_id, workspace_id) VALUES ($1, $2, $3)",
            assignment.user_id, assignment.role_id, assignment.workspace_id
        )

    async def remove_assignment(self, assignment: RoleAssignment) -> bool:
        status = await self.db.execute("""
            DELETE FROM user_roles
            WHERE user_id = $1 AND role_id = $2 AND workspace_id IS NOT DISTINCT FROM $3
        """, assignment.user_id, assignment.role_id, assignment.workspace_id)
        return not status.endswith(" 0")

    async def replace_assignments(self, user_id: str, workspace_id: Optional[str], role_id: str) -> None:
        async with self.db.pool.acquire() as conn:
            async with conn.transaction():
                await conn.execute(
                    "DELETE FROM user_roles WHERE user_id = $1 AND workspace_id IS NOT DISTINCT FROM $2",
                    user_id, workspace_id
                )
                await conn.execute(
                    "INSERT INTO user_roles (user_id, role_id, workspace_id) VALUES ($1, $2, $3)",
                    user_id, role_id, workspace_id
                )


class PostgresUsageLedger:

    def __init__(self, db: PostgresDatabase):
        self.db = db

    async def insert(self, record: UsageRecord) -> None:
        await self.db.execute("""
            INSERT INTO usage_records (user_id, resource_type, action, count, created_at)
            VALUES ($1, $2, $3, $4, $5)
        """, record.user_id, record.resource_type.value, record.action, record.count, record.timestamp)

    async def aggregate(
        self,
        user_id: str,
        resource_type: ResourceType,
        since: datetime,
        until: Optional[datetime] = None,
    ) -> int:
        total = await self.db.fetchval("""
            SELECT COALESCE(SUM(count), 0) FROM usage_records
            WHERE user_id = $1 AND resource_type = $2 AND created_at >= $3
              AND ($4::timestamptz IS NULL OR created_at < $4)
        """, user_id, resource_type.value, since, until)
        return int(total or 0)

    async def records(
        self,
        user_id: str,
        resource_type: Optional[ResourceType] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> List[UsageRecord]:
        rows = await self.db.fetch("""
            SELECT user_id, resource_type, action, count, created_at FROM usage_records
            WHERE user_id = $1
              AND ($2::text IS NULL OR resource_type = $2)
              AND ($3::timestamptz IS NULL OR created_at >= $3)
              AND ($4::timestamptz IS NULL OR created_at < $4)
            ORDER BY created_at
        """, user_id, resource_type.value if resource_type else None, since, until)
        return [
            UsageRecord(
                user_id=row["user_id"],
                resource_type=ResourceType(row["resource_type"]),
                action=row["action"],
                count=row["count"],
                timestamp=row["created_at"],
            )
            for row in rows
        ]


class PostgresWorkspaceStore:

    def __init__(self, db: PostgresDatabase):
        self.db = db

    async def get(self, workspace_id: str) -> Optional[Workspace]:
        row = await self.db.fetchrow(
            "SELECT id, owner_id, name FROM workspaces WHERE id = $1",
            workspace_id
        )
        if row is None:
            return None
        return Workspace(row["id"], row["owner_id"], row["name"])

    async def is_member(self, user_id: str, workspace_id: str) -> bool:
        found = await self.db.fetchval(
            "SELECT 1 FROM workspace_members WHERE user_id = $1 AND workspace_id = $2",
            user_id, workspace_id
        )
        return found is not None

    async def list_user_workspace_ids(self, user_id: str) -> List[str]:
        rows = await self.db.fetch("""
            SELECT workspace_id AS id FROM workspace_members WHERE user_id = $1
            UNION
            SELECT id FROM workspaces WHERE owner_id = $1
        """, user_id)
        return sorted(row["id"] for row in rows)

    async def list_owned(self, user_id: str) -> List[Workspace]:
        rows = await self.db.fetch(
            "SELECT id, owner_id, name FROM workspaces WHERE owner_id = $1",
            user_id
        )
        return [Workspace(row["id"], row["owner_id"], row["name"]) for row in rows]

    async def count_owned(self, user_id: str) -> int:
        return await self.db.fetchval(
            "SELECT COUNT(*) FROM workspaces WHERE owner_id = $1",
            user_id
        )

    async def count_members(self, workspace_id: str) -> int:
        return await self.db.fetchval(
            "SELECT COUNT(*) FROM workspace_members WHERE workspace_id = $1",
            workspace_id
        )


class PostgresResourceStore:

    def __init__(self, db: PostgresDatabase):
        self.db = db

    async def get_repository(self, repository_id: str) -> Optional[Repository]:
        row = await self.db.fetchrow(
            "SELECT id, owner_id FROM repositories WHERE id = $1",
            repository_id
        )
        return Repository(row["id"], row["owner_id"]) if row else None

    async def get_scan(self, scan_id: str) -> Optional[Scan]:
        row = await self.db.fetchrow(
            "SELECT id, workspace_id FROM scans WHERE id = $1",
            scan_id
        )
        return Scan(row["id"], row["workspace_id"]) if row else None

    async def get_schedule(self, schedule_id: str) -> Optional[Schedule]:
        row = await self.db.fetchrow(
            "SELECT id, workspace_id FROM scan_schedules WHERE id = $1",
            schedule_id
        )
        return Schedule(row["id"], row["workspace_id"]) if row else None

    async def count_repositories(self, owner_id: str) -> int:
        return await self.db.fetchval(
            "SELECT COUNT(*) FROM repositories WHERE owner_id = $1",
            owner_id
        )

    async def count_alerts(self, owner_id: str) -> int:
        return await self.db.fetchval(
            "SELECT COUNT(*) FROM alerts WHERE owner_id = $1",
            owner_id
        )


def create_postgres_stores(db: PostgresDatabase) -> Stores:
    return Stores(
        principals=PostgresPrincipalStore(db),
        roles=PostgresRoleAssignmentStore(db),
        usage=PostgresUsageLedger(db),
        workspaces=PostgresWorkspaceStore(db),
        resources=PostgresResourceStore(db),
    )
