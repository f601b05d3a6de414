from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from cafe.core.config import DATABASE_URL

connect_args = {}
if DATABASE_URL.startswith("sqlite"):
    # FastAPI roda endpoints síncronos em threads diferentes
    connect_args = {"check_same_thread": False, "timeout": 30}

engine = create_engine(DATABASE_URL, connect_args=connect_args, pool_pre_ping=True)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
