import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    LargeBinary,
    MetaData,
    Numeric,
    String,
    Table,
    create_engine,
    delete,
    func,
    insert,
    select,
    text,
    update,
)
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

import config
from errors import DatabaseError, RecordNotFound
from query_builder import QueryDescription

logger = logging.getLogger(__name__)

# ------------------------------------------------------------------------------------------------
# Engine & session
# ------------------------------------------------------------------------------------------------
_connect_args = {"check_same_thread": False} if config.DB_URL.startswith("sqlite") else {}
engine = create_engine(config.DB_URL, future=True, pool_pre_ping=True, connect_args=_connect_args)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
metadata = MetaData()

# ------------------------------------------------------------------------------------------------
# SQLAlchemy Core Table Definitions
# ------------------------------------------------------------------------------------------------
bodies_table = Table(
    "bodies",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("name", String(100), nullable=False),
)
models_table = Table(
    "models",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("name", String(100), nullable=False),
)
broken_cars_table = Table(
    "broken_cars",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("color", String(30), nullable=False),
    Column("description", String, nullable=False),
    Column("year", Integer, nullable=False),
    Column("price", Numeric(12, 2), nullable=True),
    Column("first_broken_date", Date, nullable=True),
    Column("created_date", DateTime, nullable=False, server_default=func.now()),
    Column("body_id", Integer, ForeignKey("bodies.id"), nullable=False),
    Column("model_id", Integer, ForeignKey("models.id"), nullable=False),
    Column("image", String, nullable=True),
    Column("blob", LargeBinary, nullable=True),
    Column("is_active", Boolean, nullable=False, server_default=text("true")),
)
users_table = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("username", String(50), unique=True, nullable=False),
    Column("hashed_password", String, nullable=False),
    Column("is_active", Boolean, nullable=False, default=True),
    # permission bitmask, see permissions.Permission
    Column("roles", Integer, nullable=False, server_default=text("0")),
    Column("token_version", Integer, nullable=False, server_default=text("1")),
)

# API field name -> selectable column, used for filters and ordering
COLUMNS = {
    "id": broken_cars_table.c.id,
    "color": broken_cars_table.c.color,
    "description": broken_cars_table.c.description,
    "year": broken_cars_table.c.year,
    "price": broken_cars_table.c.price,
    "firstBrokenDate": broken_cars_table.c.first_broken_date,
    "createdDate": broken_cars_table.c.created_date,
    "bodyId": broken_cars_table.c.body_id,
    "modelId": broken_cars_table.c.model_id,
    "isActive": broken_cars_table.c.is_active,
    "bodyName": bodies_table.c.name,
    "modelName": models_table.c.name,
}

_OPERATORS = {
    "eq": lambda col, v: col == v,
    "gte": lambda col, v: col >= v,
    "lt": lambda col, v: col < v,
    "lte": lambda col, v: col <= v,
}


# ------------------------------------------------------------------------------------------------
# DB Session Dependency
# ------------------------------------------------------------------------------------------------
def get_db() -> Iterator[Session]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def db_errors(db: Session, action: str) -> Iterator[None]:
    """Roll back and re-raise store failures as DatabaseError."""
    try:
        yield
    except SQLAlchemyError as e:
        db.rollback()
        err = DatabaseError.from_exception(e)
        logger.error("Database error during %s (code %s)", action, err.code, exc_info=True)
        raise err from e


# ------------------------------------------------------------------------------------------------
# Broken cars data access
# ------------------------------------------------------------------------------------------------
def _joined_select():
    return select(
        broken_cars_table,
        bodies_table.c.name.label("body_name"),
        models_table.c.name.label("model_name"),
    ).select_from(
        broken_cars_table.outerjoin(bodies_table, broken_cars_table.c.body_id == bodies_table.c.id)
        .outerjoin(models_table, broken_cars_table.c.model_id == models_table.c.id)
    )


def render_list_query(description: QueryDescription):
    q = _joined_select()
    for p in description.predicates:
        q = q.where(_OPERATORS[p.op](COLUMNS[p.field], p.value))
    if description.sort:
        for key in description.sort:
            col = COLUMNS[key.field]
            q = q.order_by(col.asc() if key.direction == "asc" else col.desc())
    else:
        q = q.order_by(broken_cars_table.c.id.asc())
    return q.offset(description.offset).limit(description.limit)


def get_data(db: Session, description: QueryDescription) -> List[Dict[str, Any]]:
    with db_errors(db, "list"):
        rows = db.execute(render_list_query(description)).mappings().all()
    return [dict(r) for r in rows]


def get_one(db: Session, record_id: int) -> Optional[Dict[str, Any]]:
    with db_errors(db, "get"):
        row = db.execute(
            _joined_select().where(broken_cars_table.c.id == record_id)
        ).mappings().first()
    return dict(row) if row else None


def create_data(db: Session, values: Dict[str, Any]) -> int:
    with db_errors(db, "create"):
        res = db.execute(insert(broken_cars_table).values(**values))
        db.commit()
    new_id = res.inserted_primary_key[0]
    logger.info("Created broken car %s", new_id)
    return new_id


def update_data(db: Session, record_id: int, changes: Dict[str, Any]) -> Dict[str, Any]:
    with db_errors(db, "update"):
        res = db.execute(
            update(broken_cars_table).where(broken_cars_table.c.id == record_id).values(**changes)
        )
        if res.rowcount == 0:
            db.rollback()
            raise RecordNotFound(record_id)
        db.commit()
    logger.info("Updated broken car %s: %s", record_id, sorted(changes))
    return get_one(db, record_id)


def delete_data(db: Session, record_id: int, soft: bool = False) -> None:
    with db_errors(db, "delete"):
        if soft:
            stmt = (
                update(broken_cars_table)
                .where(broken_cars_table.c.id == record_id)
                .where(broken_cars_table.c.is_active == True)  # noqa: E712
                .values(is_active=False)
            )
        else:
            stmt = delete(broken_cars_table).where(broken_cars_table.c.id == record_id)
        res = db.execute(stmt)
        if res.rowcount == 0:
            db.rollback()
            raise RecordNotFound(record_id)
        db.commit()
    logger.info("Deleted broken car %s (soft=%s)", record_id, soft)


# ------------------------------------------------------------------------------------------------
# Users
# ------------------------------------------------------------------------------------------------
def get_user_by_username(db: Session, username: str) -> Optional[Dict[str, Any]]:
    with db_errors(db, "user lookup"):
        row = db.execute(
            select(users_table).where(users_table.c.username == username)
        ).mappings().first()
    return dict(row) if row else None


def create_user(db: Session, username: str, hashed_password: str, roles: int) -> None:
    with db_errors(db, "user create"):
        db.execute(
            insert(users_table).values(
                username=username,
                hashed_password=hashed_password,
                is_active=True,
                roles=int(roles),
                token_version=1,
            )
        )
        db.commit()


def bump_token_version(db: Session, username: str) -> None:
    with db_errors(db, "logout"):
        db.execute(
            update(users_table)
            .where(users_table.c.username == username)
            .values(token_version=text("COALESCE(token_version,1) + 1"))
        )
        db.commit()


def ping(db: Session) -> None:
    with db_errors(db, "health check"):
        db.execute(select(1))
