"""
PositionStore: durable (container, item, key) triples with conditioned writes.

Every write is a single transaction that checks what the caller read is still
true (the item's own prior key, the neighbor keys, and an empty target gap).
A failed check raises `TransientConflict`; the caller re-reads and retries.
"""
from __future__ import annotations

import threading
from collections.abc import Generator, Hashable, Mapping
from contextlib import contextmanager
from typing import Any, Literal

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session, sessionmaker

from .errors import InvalidReference, StoreUnavailable, TransientConflict
from .keys import PositionKey, StoredKey

Direction = Literal["before", "after"]
Neighbors = tuple[PositionKey | None, PositionKey | None]

_RETRYABLE_PGCODES = frozenset({"40001", "40P01"})


class PositionStore:
    def get_key(self, item_id: Hashable) -> StoredKey:
        raise NotImplementedError

    def read_neighbors(
        self,
        container_id: Hashable,
        ref_item_id: Hashable | None,
        direction: Direction,
        *,
        exclude: Hashable | None = None,
    ) -> Neighbors:
        """
        Keys bounding the gap on one side of `ref_item_id`.

        With `ref_item_id=None`, "before" is the gap above the first item and
        "after" the gap below the last one.
        """
        raise NotImplementedError

    def write_key(
        self,
        item_id: Hashable,
        new_value: float,
        expected_prior: StoredKey,
        *,
        container_id: Hashable,
        lower: PositionKey | None,
        upper: PositionKey | None,
    ) -> None:
        raise NotImplementedError

    def read_all_ordered(self, container_id: Hashable) -> list[tuple[Hashable, PositionKey]]:
        raise NotImplementedError

    def rewrite_container(
        self,
        container_id: Hashable,
        new_keys: Mapping[Hashable, float],
        *,
        expected: Mapping[Hashable, float] | None = None,
    ) -> None:
        raise NotImplementedError


def _pick_neighbors(
    ordered: list[tuple[Hashable, PositionKey]],
    ref_item_id: Hashable | None,
    direction: Direction,
) -> Neighbors:
    keys = [k for _, k in ordered]
    if ref_item_id is None:
        if direction == "before":
            return (None, keys[0] if keys else None)
        return (keys[-1] if keys else None, None)

    ids = [i for i, _ in ordered]
    try:
        idx = ids.index(ref_item_id)
    except ValueError:
        raise InvalidReference(f"Item {ref_item_id!r} is not placed in this container") from None
    if direction == "before":
        return (keys[idx - 1] if idx > 0 else None, keys[idx])
    return (keys[idx], keys[idx + 1] if idx + 1 < len(keys) else None)


class InMemoryPositionStore(PositionStore):
    """Thread-safe store kept in a dict; used by tests and offline tooling."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._rows: dict[Hashable, tuple[Hashable, float | None]] = {}

    def add_item(self, item_id: Hashable, container_id: Hashable, value: float | None = None) -> None:
        with self._lock:
            self._rows[item_id] = (container_id, value)

    def remove_item(self, item_id: Hashable) -> None:
        with self._lock:
            self._rows.pop(item_id, None)

    def _ordered(self, container_id: Hashable, exclude: Hashable | None = None) -> list[tuple[Hashable, PositionKey]]:
        rows = [
            (item_id, PositionKey(value, item_id))
            for item_id, (cid, value) in self._rows.items()
            if cid == container_id and value is not None and item_id != exclude
        ]
        rows.sort(key=lambda r: r[1])
        return rows

    def get_key(self, item_id: Hashable) -> StoredKey:
        with self._lock:
            row = self._rows.get(item_id)
        if row is None:
            raise InvalidReference(f"Item {item_id!r} not found")
        cid, value = row
        return StoredKey(cid, PositionKey(value, item_id) if value is not None else None)

    def read_neighbors(self, container_id, ref_item_id, direction, *, exclude=None) -> Neighbors:
        with self._lock:
            return _pick_neighbors(self._ordered(container_id, exclude), ref_item_id, direction)

    def write_key(self, item_id, new_value, expected_prior, *, container_id, lower, upper) -> None:
        with self._lock:
            row = self._rows.get(item_id)
            if row is None:
                raise InvalidReference(f"Item {item_id!r} not found")
            prior_value = expected_prior.key.value if expected_prior.key else None
            if row != (expected_prior.container_id, prior_value):
                raise TransientConflict(f"Item {item_id!r} moved since it was read")

            for guard in (lower, upper):
                if guard is not None and self._rows.get(guard.tie_break) != (container_id, guard.value):
                    raise TransientConflict(f"Neighbor {guard.tie_break!r} moved since it was read")

            lo = lower.value if lower else float("-inf")
            hi = upper.value if upper else float("inf")
            for other_id, key in self._ordered(container_id, exclude=item_id):
                if lo < key.value < hi:
                    raise TransientConflict(f"Item {other_id!r} was placed into the same gap")

            self._rows[item_id] = (container_id, new_value)

    def read_all_ordered(self, container_id) -> list[tuple[Hashable, PositionKey]]:
        with self._lock:
            return self._ordered(container_id)

    def rewrite_container(self, container_id, new_keys, *, expected=None) -> None:
        with self._lock:
            current = {item_id: key.value for item_id, key in self._ordered(container_id)}
            if set(current) != set(new_keys):
                raise TransientConflict(f"Container {container_id!r} membership changed during rewrite")
            if expected is not None and current != dict(expected):
                raise TransientConflict(f"Container {container_id!r} keys changed during rewrite")
            for item_id, value in new_keys.items():
                self._rows[item_id] = (container_id, float(value))


class SqlPositionStore(PositionStore):
    """
    Store backed by a mapped table with `id`, a container column and a
    double-precision `position` column. Each call runs in its own transaction.
    """

    def __init__(self, sm: sessionmaker, model: Any, *, container_column: str = "board_id") -> None:
        self._sm = sm
        self._model = model
        self._id = model.id
        self._container = getattr(model, container_column)
        self._position = model.position

    @contextmanager
    def _transaction(self) -> Generator[Session, None, None]:
        s: Session = self._sm()
        try:
            yield s
            s.commit()
        except DBAPIError as e:
            s.rollback()
            # Postgres serialization failure / deadlock: the loser retries.
            if getattr(e.orig, "pgcode", None) in _RETRYABLE_PGCODES:
                raise TransientConflict(str(e.orig)) from e
            raise StoreUnavailable(str(e)) from e
        except Exception:
            s.rollback()
            raise
        finally:
            s.close()

    def _placed(self, container_id: Hashable):
        return and_(self._container == container_id, self._position.is_not(None))

    def get_key(self, item_id: Hashable) -> StoredKey:
        with self._transaction() as s:
            row = s.execute(select(self._container, self._position).where(self._id == item_id)).one_or_none()
        if row is None:
            raise InvalidReference(f"Item {item_id!r} not found")
        cid, value = row
        return StoredKey(cid, PositionKey(value, item_id) if value is not None else None)

    def read_neighbors(self, container_id, ref_item_id, direction, *, exclude=None) -> Neighbors:
        with self._transaction() as s:
            base = select(self._id, self._position).where(self._placed(container_id))
            if exclude is not None:
                base = base.where(self._id != exclude)
            asc = (self._position.asc(), self._id.asc())
            desc = (self._position.desc(), self._id.desc())

            if ref_item_id is None:
                order = asc if direction == "before" else desc
                row = s.execute(base.order_by(*order).limit(1)).first()
                key = PositionKey(row[1], row[0]) if row else None
                return (None, key) if direction == "before" else (key, None)

            ref = s.execute(
                select(self._position).where(self._placed(container_id), self._id == ref_item_id)
            ).scalar_one_or_none()
            if ref is None:
                raise InvalidReference(f"Item {ref_item_id!r} is not placed in container {container_id!r}")
            ref_key = PositionKey(ref, ref_item_id)

            if direction == "before":
                cond = or_(self._position < ref, and_(self._position == ref, self._id < ref_item_id))
                row = s.execute(base.where(cond).order_by(*desc).limit(1)).first()
                return (PositionKey(row[1], row[0]) if row else None, ref_key)
            cond = or_(self._position > ref, and_(self._position == ref, self._id > ref_item_id))
            row = s.execute(base.where(cond).order_by(*asc).limit(1)).first()
            return (ref_key, PositionKey(row[1], row[0]) if row else None)

    def write_key(self, item_id, new_value, expected_prior, *, container_id, lower, upper) -> None:
        prior_value = expected_prior.key.value if expected_prior.key else None
        with self._transaction() as s:
            # SQLite ignores FOR UPDATE and only takes its write lock on the
            # first UPDATE, so touch the item row before checking its prior key.
            s.execute(
                update(self._model)
                .where(self._id == item_id)
                .values({self._position: self._position})
                .execution_options(synchronize_session=False)
            )
            row = s.execute(
                select(self._container, self._position).where(self._id == item_id).with_for_update()
            ).one_or_none()
            if row is None:
                raise InvalidReference(f"Item {item_id!r} not found")
            if (row[0], row[1]) != (expected_prior.container_id, prior_value):
                raise TransientConflict(f"Item {item_id!r} moved since it was read")

            # Touching the neighbor rows locks them until commit, so two
            # writers into the same gap serialize before the gap check.
            for guard in (lower, upper):
                if guard is None:
                    continue
                res = s.execute(
                    update(self._model)
                    .where(self._id == guard.tie_break, self._container == container_id, self._position == guard.value)
                    .values({self._position: guard.value})
                    .execution_options(synchronize_session=False)
                )
                if res.rowcount != 1:
                    raise TransientConflict(f"Neighbor {guard.tie_break!r} moved since it was read")

            gap = select(func.count()).select_from(self._model).where(
                self._placed(container_id), self._id != item_id
            )
            if lower is not None:
                gap = gap.where(self._position > lower.value)
            if upper is not None:
                gap = gap.where(self._position < upper.value)
            if s.execute(gap).scalar_one():
                raise TransientConflict(f"Another item was placed between the neighbors of {item_id!r}")

            s.execute(
                update(self._model)
                .where(self._id == item_id)
                .values({self._position: new_value, self._container: container_id})
                .execution_options(synchronize_session=False)
            )

    def read_all_ordered(self, container_id) -> list[tuple[Hashable, PositionKey]]:
        with self._transaction() as s:
            rows = s.execute(
                select(self._id, self._position)
                .where(self._placed(container_id))
                .order_by(self._position.asc(), self._id.asc())
            ).all()
        return [(item_id, PositionKey(value, item_id)) for item_id, value in rows]

    def rewrite_container(self, container_id, new_keys, *, expected=None) -> None:
        with self._transaction() as s:
            rows = s.execute(
                select(self._id, self._position).where(self._placed(container_id)).with_for_update()
            ).all()
            current = {item_id: value for item_id, value in rows}
            if set(current) != set(new_keys):
                raise TransientConflict(f"Container {container_id!r} membership changed during rewrite")
            if expected is not None and current != dict(expected):
                raise TransientConflict(f"Container {container_id!r} keys changed during rewrite")
            for item_id, value in new_keys.items():
                res = s.execute(
                    update(self._model)
                    .where(self._id == item_id, self._container == container_id, self._position == current[item_id])
                    .values({self._position: float(value)})
                    .execution_options(synchronize_session=False)
                )
                if res.rowcount != 1:
                    raise TransientConflict(f"Item {item_id!r} changed during rewrite")
