from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker


def create_db_engine(database_url: str):
    return create_engine(database_url, pool_pre_ping=True, future=True)


def create_session_factory(engine):
    return sessionmaker(bind=engine, expire_on_commit=False, future=True)
