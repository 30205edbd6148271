from __future__ import annotations


def dialect_name(session) -> str:
    return session.get_bind().dialect.name


def insert_for(session):
    """
    The dialect's own `insert` construct, which carries the native
    conflict clauses (`on_conflict_do_update` / `on_duplicate_key_update`).
    """
    name = dialect_name(session)
    if name in ("mysql", "mariadb"):
        from sqlalchemy.dialects.mysql import insert
    elif name == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif name == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise NotImplementedError(f"no atomic upsert for dialect {name!r}")
    return insert


def supports_returning(session) -> bool:
    """RETURNING on an upsert: PostgreSQL and SQLite >= 3.35."""
    bind = session.get_bind()
    return bind.dialect.name in ("postgresql", "sqlite") and bool(
        getattr(bind.dialect, "insert_returning", False)
    )
