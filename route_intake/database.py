from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from route_intake.config import settings

engine = create_engine(
    settings.database_url,
    isolation_level=settings.db_isolation_level,
    pool_pre_ping=True,
)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)


class Base(DeclarativeBase):
    pass
