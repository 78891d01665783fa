"""
Document-style helpers over the SQLAlchemy session.

The services treat each row as a document with array-valued back-reference
sets. These helpers give them the partial-update vocabulary they need:
``add_to_set`` / ``pull`` on a set, lookups by id or by set membership, and
bulk deletes. Every call works on one collection at a time; consistency
across collections is the caller's job.

A set is rewritten whole, so a workflow that changes one must first load
the row with ``for_update=True`` (or ``lock`` it). The row lock serialises
concurrent writers on PostgreSQL; SQLite ignores ``FOR UPDATE`` and relies
on its single-writer lock, and the re-read still picks up committed data.

JSON columns are only flagged dirty when the attribute is reassigned, so
every mutation below builds a new list instead of editing in place.
"""
from typing import Any, Iterable, TypeVar

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from social_api.database import Base

M = TypeVar("M", bound=Base)


# ---------------------------------------------------------------------------
# Set operations on a loaded document
# ---------------------------------------------------------------------------

def members(doc: Base, field: str) -> list:
    return list(getattr(doc, field) or [])


def contains(doc: Base, field: str, value: Any) -> bool:
    return value in members(doc, field)


def add_to_set(doc: Base, field: str, value: Any) -> bool:
    """
    Append *value* to the array *field* of *doc* unless it is already there.

    Returns True when the array changed.
    """
    current = members(doc, field)
    if value in current:
        return False
    setattr(doc, field, [*current, value])
    return True


def pull(doc: Base, field: str, value: Any) -> bool:
    """
    Remove every occurrence of *value* from the array *field* of *doc*.

    Returns True when something was removed. Pulling a missing value is a
    no-op.
    """
    current = members(doc, field)
    remaining = [v for v in current if v != value]
    if len(remaining) == len(current):
        return False
    setattr(doc, field, remaining)
    return True


def pull_all(doc: Base, field: str, values: Iterable[Any]) -> int:
    """Remove every value in *values* from *field*; return the number removed."""
    drop = set(values)
    current = members(doc, field)
    remaining = [v for v in current if v not in drop]
    removed = len(current) - len(remaining)
    if removed:
        setattr(doc, field, remaining)
    return removed


# ---------------------------------------------------------------------------
# Collection queries
# ---------------------------------------------------------------------------

async def find_by_id(
    db: AsyncSession, model: type[M], doc_id: int, for_update: bool = False
) -> M | None:
    """
    Load one document by id.

    With *for_update* the row is locked until the transaction ends and the
    instance is re-read from the database, so a set read here and written
    back later cannot overwrite a change committed by another request.
    """
    if not for_update:
        return await db.get(model, doc_id)
    q = (
        select(model)
        .where(model.id == doc_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return (await db.execute(q)).scalar_one_or_none()


async def lock(db: AsyncSession, doc: Base) -> None:
    """Lock the row behind an already-loaded *doc* and re-read its fields."""
    await db.flush()
    await db.refresh(doc, with_for_update=True)


async def find_many(db: AsyncSession, model: type[M], ids: Iterable[int]) -> list[M]:
    """Return the documents of *model* whose id is in *ids*, in id order."""
    ids = list(ids)
    if not ids:
        return []
    result = await db.execute(select(model).where(model.id.in_(ids)).order_by(model.id))
    return list(result.scalars().all())


async def find_all(db: AsyncSession, model: type[M], for_update: bool = False) -> list[M]:
    """Every document of *model* in id order, optionally locked and re-read."""
    q = select(model).order_by(model.id)
    if for_update:
        q = q.with_for_update().execution_options(populate_existing=True)
    return list((await db.execute(q)).scalars().all())


async def find_containing(
    db: AsyncSession, model: type[M], field: str, value: Any, for_update: bool = False
) -> list[M]:
    """
    Return every document of *model* whose array *field* holds *value*.

    Membership is evaluated in Python so the same query works on every
    backend's JSON type.
    """
    docs = await find_all(db, model, for_update=for_update)
    return [doc for doc in docs if contains(doc, field, value)]


async def pull_everywhere(db: AsyncSession, model: type[M], field: str, value: Any) -> int:
    """
    Fan-out cleanup: pull *value* from *field* on every document holding it.

    Returns the number of documents modified.
    """
    docs = await find_containing(db, model, field, value, for_update=True)
    for doc in docs:
        pull(doc, field, value)
    if docs:
        await db.flush()
    return len(docs)


async def delete_one(db: AsyncSession, doc: Base) -> None:
    await db.delete(doc)
    await db.flush()


async def delete_where(db: AsyncSession, model: type[M], *criteria) -> list[int]:
    """Delete every row of *model* matching *criteria*; return the deleted ids."""
    ids = list((await db.execute(select(model.id).where(*criteria))).scalars().all())
    if ids:
        await db.execute(delete(model).where(model.id.in_(ids)))
    return ids
