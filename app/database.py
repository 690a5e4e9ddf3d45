from sqlalchemy import create_engine, event
from sqlalchemy.orm import declarative_base, sessionmaker
from app.config import settings

_is_postgres = settings.DATABASE_URL.startswith("postgresql")

# Create engine
engine = create_engine(
    settings.DATABASE_URL,
    pool_pre_ping=True,
    echo=settings.DEBUG,
    connect_args={"options": f"-c timezone={settings.BUSINESS_TIMEZONE}"} if _is_postgres else {},
)


if _is_postgres:
    @event.listens_for(engine, "connect")
    def set_timezone(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute(f"SET timezone='{settings.BUSINESS_TIMEZONE}'")
        cursor.close()


# Session factory. Objects stay readable after the unit of work commits.
SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)

# Base class for models
Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
