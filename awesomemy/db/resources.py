from __future__ import annotations

import uuid
from typing import Any, Dict, List, Optional, Tuple

from awesomemy.errors import DatabaseUnavailable
from awesomemy.pagination import ListingFilter, PageWindow
from awesomemy.resources import Resource, ResourceKind


def _select_columns(kind: ResourceKind) -> str:
    return ", ".join([kind.id_column, "uuid", "user_id", "created_at", *kind.columns])


def _row_to_resource(kind: ResourceKind, row) -> Resource:
    attrs = {col: row[4 + i] for i, col in enumerate(kind.columns)}
    if "tags" in attrs:
        attrs["tags"] = list(attrs["tags"] or [])
    return Resource(
        kind=kind.name,
        resource_id=int(row[0]),
        uuid=row[1] if isinstance(row[1], uuid.UUID) else uuid.UUID(str(row[1])),
        user_id=int(row[2]),
        created_at=row[3],
        attrs=attrs,
    )


def _where(flt: ListingFilter, owner_id: Optional[int]) -> Tuple[str, List[Any]]:
    conditions: List[str] = []
    params: List[Any] = []
    if owner_id is not None:
        conditions.append("user_id = %s")
        params.append(owner_id)
    if flt.tags:
        # Row must carry every requested tag.
        conditions.append("tags @> %s")
        params.append(list(flt.tags))
    if flt.keyword:
        conditions.append("(name ILIKE %s OR description ILIKE %s)")
        pattern = f"%{flt.keyword}%"
        params.extend([pattern, pattern])
    where = " AND ".join(conditions)
    return (f"WHERE {where}" if where else ""), params


class PostgresResourceRepository:
    def __init__(self, dsn: str) -> None:
        self._dsn = dsn

    def _connect(self):
        import psycopg  # type: ignore[import-not-found]

        return psycopg.connect(self._dsn)

    def list(
        self, kind: ResourceKind, window: PageWindow, flt: ListingFilter, *, owner_id: Optional[int] = None
    ) -> Tuple[List[Resource], int]:
        import psycopg  # type: ignore[import-not-found]

        where, params = _where(flt, owner_id)
        order = "ASC" if flt.order_by == "asc" else "DESC"
        try:
            with self._connect() as conn:
                rows = conn.execute(
                    f"""
                    SELECT {_select_columns(kind)}
                    FROM {kind.table}
                    {where}
                    ORDER BY created_at {order}, {kind.id_column} {order}
                    LIMIT %s OFFSET %s;
                    """,
                    params + [window.limit, window.offset],
                ).fetchall()
                count_row = conn.execute(f"SELECT COUNT(*) FROM {kind.table} {where};", params).fetchone()
        except psycopg.Error as e:
            raise DatabaseUnavailable(f"{kind.table} listing failed: {e}") from e

        total = int(count_row[0]) if count_row and count_row[0] else 0
        return [_row_to_resource(kind, r) for r in rows or []], total

    def get(self, kind: ResourceKind, resource_uuid: uuid.UUID) -> Optional[Resource]:
        import psycopg  # type: ignore[import-not-found]

        try:
            with self._connect() as conn:
                row = conn.execute(
                    f"SELECT {_select_columns(kind)} FROM {kind.table} WHERE uuid = %s;",
                    (resource_uuid,),
                ).fetchone()
        except psycopg.Error as e:
            raise DatabaseUnavailable(f"{kind.table} fetch failed: {e}") from e
        return _row_to_resource(kind, row) if row else None

    def insert(self, kind: ResourceKind, owner_id: int, attrs: Dict[str, Any]) -> Resource:
        import psycopg  # type: ignore[import-not-found]

        cols = ["user_id", *kind.columns]
        values = [owner_id, *[attrs.get(c) for c in kind.columns]]
        placeholders = ", ".join(["%s"] * len(cols))
        try:
            with self._connect() as conn:
                row = conn.execute(
                    f"INSERT INTO {kind.table} ({', '.join(cols)}) VALUES ({placeholders}) "
                    f"RETURNING {_select_columns(kind)};",
                    values,
                ).fetchone()
        except psycopg.Error as e:
            raise DatabaseUnavailable(f"{kind.table} insert failed: {e}") from e
        if not row:
            raise DatabaseUnavailable(f"{kind.table} insert returned no row")
        return _row_to_resource(kind, row)

    def update(self, kind: ResourceKind, resource_id: int, attrs: Dict[str, Any]) -> Resource:
        import psycopg  # type: ignore[import-not-found]

        assignments = ", ".join(f"{c} = %s" for c in kind.columns)
        values = [attrs.get(c) for c in kind.columns] + [resource_id]
        try:
            with self._connect() as conn:
                row = conn.execute(
                    f"UPDATE {kind.table} SET {assignments} WHERE {kind.id_column} = %s "
                    f"RETURNING {_select_columns(kind)};",
                    values,
                ).fetchone()
        except psycopg.Error as e:
            raise DatabaseUnavailable(f"{kind.table} update failed: {e}") from e
        if not row:
            raise DatabaseUnavailable(f"{kind.table} update matched no row")
        return _row_to_resource(kind, row)

    def delete(self, kind: ResourceKind, resource_id: int) -> None:
        import psycopg  # type: ignore[import-not-found]

        try:
            with self._connect() as conn:
                conn.execute(f"DELETE FROM {kind.table} WHERE {kind.id_column} = %s;", (resource_id,))
        except psycopg.Error as e:
            raise DatabaseUnavailable(f"{kind.table} delete failed: {e}") from e
