from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from circulation.config import settings

DATABASE_URL = settings.sqlalchemy_url

# Connection arguments; the timeout bounds how long a writer waits on a locked row/database
connect_args = {}
engine_kwargs = {}
if DATABASE_URL.startswith("sqlite"):
    connect_args["check_same_thread"] = False
    connect_args["timeout"] = settings.collaborator_timeout_seconds
else:
    connect_args["connect_timeout"] = int(settings.collaborator_timeout_seconds)
    if settings.db_ssl_mode != "disable":
        connect_args["sslmode"] = settings.db_ssl_mode
    engine_kwargs.update(
        pool_pre_ping=True,
        pool_recycle=300,
        pool_size=10,
        max_overflow=20,
    )

engine = create_engine(
    DATABASE_URL,
    echo=False,
    connect_args=connect_args,
    **engine_kwargs
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
