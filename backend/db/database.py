from sqlalchemy import create_engine, event, inspect, text
from sqlalchemy.orm import sessionmaker, DeclarativeBase

from config import settings


engine = create_engine(
    settings.DATABASE_URL,
    connect_args={"check_same_thread": False},
    echo=False,
)


# Enable WAL mode for better concurrent read performance
@event.listens_for(engine, "connect")
def set_sqlite_pragma(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class Base(DeclarativeBase):
    pass


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def run_startup_migrations() -> None:
    """Create indexes that older SQLite files may be missing."""
    inspector = inspect(engine)
    tables = set(inspector.get_table_names())
    if not tables:
        # Tables may not exist yet on first boot.
        return

    with engine.begin() as conn:
        if "homeschools" in tables:
            conn.execute(text(
                """
                CREATE UNIQUE INDEX IF NOT EXISTS idx_homeschools_public_dashboard
                ON homeschools (public_dashboard_id)
                """
            ))
        if "activity_instances" in tables:
            conn.execute(text(
                """
                CREATE INDEX IF NOT EXISTS idx_activity_instances_goal_student_date
                ON activity_instances (goal_id, student_id, date)
                """
            ))
            conn.execute(text(
                """
                CREATE INDEX IF NOT EXISTS idx_activity_instances_student_date
                ON activity_instances (student_id, date)
                """
            ))
