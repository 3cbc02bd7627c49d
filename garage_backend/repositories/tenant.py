"""
Tenant-scoped data access

Every table carries ``garage_id``. Services receive a TenantScope instead of
building tenant predicates by hand: queries started from the scope are already
filtered to the garage, and rows added through it are stamped with it.
"""
from typing import Any, Optional, Type, TypeVar

from sqlalchemy import select, Select
from sqlalchemy.ext.asyncio import AsyncSession

T = TypeVar("T")


class TenantScope:
    """Database session bound to one garage."""

    def __init__(self, db: AsyncSession, garage_id: int):
        self.db = db
        self.garage_id = garage_id

    def select(self, model: Type[T], *columns: Any) -> Select:
        """SELECT on ``model`` (or the given columns of it) filtered to this garage."""
        stmt = select(*columns) if columns else select(model)
        return stmt.where(model.garage_id == self.garage_id)

    async def get(self, model: Type[T], obj_id: int, for_update: bool = False) -> Optional[T]:
        stmt = self.select(model).where(model.id == obj_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def all(self, stmt: Select) -> list:
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def scalar(self, stmt: Select) -> Any:
        result = await self.db.execute(stmt)
        return result.scalar()

    def add(self, instance: T) -> T:
        instance.garage_id = self.garage_id
        self.db.add(instance)
        return instance

    async def delete(self, instance: Any) -> None:
        if instance.garage_id != self.garage_id:
            raise ValueError("Refusing to delete a row owned by another garage")
        await self.db.delete(instance)

    async def flush(self) -> None:
        await self.db.flush()
