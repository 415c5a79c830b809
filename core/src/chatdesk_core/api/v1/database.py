from __future__ import annotations

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field

from chatdesk_core.api.models import ApiResponse, OperationResult, ok, to_operation_result
from chatdesk_core.api.state import get_manager

router = APIRouter(tags=["database"])


class AppliedMigration(BaseModel):
    version: int
    description: str
    applied_at: str


class DatabaseStatus(BaseModel):
    name: str
    current_version: int
    pending_migrations: int
    applied_migrations: list[AppliedMigration]


class DatabaseHealthOut(BaseModel):
    healthy: bool
    error: str | None = None


class HealthOut(BaseModel):
    overall: bool
    databases: dict[str, DatabaseHealthOut]


class BackupOut(BaseModel):
    success: bool
    backup_paths: list[str]
    errors: list[str]


class MigrateAllOut(BaseModel):
    success: bool
    results: dict[str, OperationResult]


class RollbackRequest(BaseModel):
    target_version: int = Field(ge=0)


@router.get("/database/status", response_model=ApiResponse[dict[str, DatabaseStatus]])
async def database_status(request: Request) -> ApiResponse[dict[str, DatabaseStatus]]:
    manager = get_manager(request)
    statuses = {
        name: DatabaseStatus(
            name=status.name,
            current_version=status.current_version,
            pending_migrations=status.pending_migrations,
            applied_migrations=[
                AppliedMigration(
                    version=r.version, description=r.description, applied_at=r.applied_at
                )
                for r in status.applied_migrations
            ],
        )
        for name, status in manager.get_migration_info().items()
    }
    return ok(statuses)


@router.get("/database/health", response_model=ApiResponse[HealthOut])
async def database_health(request: Request) -> ApiResponse[HealthOut]:
    manager = get_manager(request)
    health = manager.health_check()
    return ok(
        HealthOut(
            overall=health.overall,
            databases={
                name: DatabaseHealthOut(healthy=h.healthy, error=h.error)
                for name, h in health.databases.items()
            },
        )
    )


@router.post("/database/backup", response_model=ApiResponse[BackupOut])
async def database_backup(request: Request) -> ApiResponse[BackupOut]:
    manager = get_manager(request)
    result = manager.create_backup()
    return ok(
        BackupOut(
            success=result.success,
            backup_paths=[str(p) for p in result.backup_paths],
            errors=result.errors,
        )
    )


@router.post("/database/migrate", response_model=ApiResponse[MigrateAllOut])
async def database_migrate(request: Request) -> ApiResponse[MigrateAllOut]:
    manager = get_manager(request)
    result = manager.force_migration()
    return ok(
        MigrateAllOut(
            success=result.success,
            results={name: to_operation_result(r) for name, r in result.results.items()},
        )
    )


@router.post("/database/{name}/rollback", response_model=ApiResponse[OperationResult])
async def database_rollback(
    request: Request, name: str, payload: RollbackRequest
) -> ApiResponse[OperationResult]:
    manager = get_manager(request)
    if manager.migration_manager.get_migrator(name) is None:
        raise HTTPException(status_code=404, detail=f"Database {name} not found")

    # A failed rollback is still a well-formed answer; callers read `success`.
    return ok(to_operation_result(manager.rollback_database(name, payload.target_version)))
