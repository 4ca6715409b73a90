"""Key/value metadata helpers over the ``entity_meta`` table."""

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from provisioner.models.entity_meta import EntityMeta


async def get_meta_map(db: AsyncSession, rel_type: str, rel_id: int) -> dict[str, str | None]:
    result = await db.execute(
        select(EntityMeta.name, EntityMeta.value).where(
            EntityMeta.rel_type == rel_type,
            EntityMeta.rel_id == rel_id,
        )
    )
    return {name: value for name, value in result.all()}


async def get_meta(db: AsyncSession, rel_type: str, rel_id: int, name: str) -> str | None:
    result = await db.execute(
        select(EntityMeta.value).where(
            EntityMeta.rel_type == rel_type,
            EntityMeta.rel_id == rel_id,
            EntityMeta.name == name,
        )
    )
    return result.scalar_one_or_none()


async def set_meta(db: AsyncSession, rel_type: str, rel_id: int, name: str, value: str) -> EntityMeta:
    """Insert or update a single (rel_type, rel_id, name) row."""
    result = await db.execute(
        select(EntityMeta).where(
            EntityMeta.rel_type == rel_type,
            EntityMeta.rel_id == rel_id,
            EntityMeta.name == name,
        )
    )
    row = result.scalar_one_or_none()
    if row:
        row.value = value
    else:
        row = EntityMeta(rel_type=rel_type, rel_id=rel_id, name=name, value=value)
        db.add(row)
    await db.flush()
    return row


async def delete_meta(db: AsyncSession, rel_type: str, rel_id: int, name: str | None = None) -> None:
    """Delete one named row, or every row for the entity when ``name`` is None."""
    stmt = delete(EntityMeta).where(
        EntityMeta.rel_type == rel_type,
        EntityMeta.rel_id == rel_id,
    )
    if name is not None:
        stmt = stmt.where(EntityMeta.name == name)
    await db.execute(stmt)
