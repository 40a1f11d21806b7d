# storefront/utils/db.py

from contextlib import contextmanager

from sqlmodel import Session, SQLModel, create_engine

from storefront.config import get_settings

database_url = get_settings().database_url

# check_same_thread=False is only needed for SQLite. It's not needed for other databases.
connect_args = {"check_same_thread": False} if database_url.startswith("sqlite") else {}
engine = create_engine(database_url, connect_args=connect_args)


def init_db(bind=None):
    # Import the models so every table is registered on the metadata
    import storefront.models  # noqa: F401

    SQLModel.metadata.create_all(bind or engine)


def get_session():
    # Dependency to yield a database session
    with Session(engine) as session:
        yield session


@contextmanager
def atomic(session: Session):
    """
    Commit everything done inside the block as one transaction,
    or roll all of it back if anything raises.
    """
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
