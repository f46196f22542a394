"""
Database setup and connection management for the delegation core.

This module handles:
- SQLAlchemy engine creation
- Session management
- Connection pooling configuration
- Database initialization and country seeding
"""

from sqlalchemy import create_engine, inspect, pool, select, text
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.exc import SQLAlchemyError
import os
from typing import Generator, List, Optional
import logging

from delegation.models import Base, Country

logger = logging.getLogger(__name__)

import dotenv

dotenv.load_dotenv()


class DatabaseConfig:
    """Configuration for database connections"""

    def __init__(self, connection_string: Optional[str] = None):
        self.connection_string = connection_string or os.getenv(
            "DATABASE_URL",
            "sqlite:///./delegates.db"
        )

        # Connection pooling
        self.pool_size = int(os.getenv("DB_POOL_SIZE", "10"))
        self.max_overflow = int(os.getenv("DB_MAX_OVERFLOW", "20"))
        self.pool_recycle = int(os.getenv("DB_POOL_RECYCLE", "1500"))

        # Seconds a SQLite writer waits on a locked database
        self.sqlite_timeout = float(os.getenv("DB_SQLITE_TIMEOUT", "30"))

        # Echo SQL for debugging (set False in production)
        self.echo = os.getenv("DB_ECHO", "False").lower() == "true"

        logger.info(f"Database config: pool_size={self.pool_size}, max_overflow={self.max_overflow}")

    @property
    def is_sqlite(self) -> bool:
        return self.connection_string.lower().startswith("sqlite")


class DatabaseManager:
    """
    Manages database connections and session lifecycle.

    Usage:
        DatabaseManager.initialize()
        session = DatabaseManager.session()
    """

    _engine = None
    _SessionLocal = None
    _db_type = None

    # Tables in dependency order (none of them reference each other today)
    table_creation_order = [
        "countries",
        "profiles",
        "documents",
        "messages",
        "notifications",
    ]

    @classmethod
    def initialize(cls, config: DatabaseConfig = None, seed_countries: Optional[List[str]] = None):
        """
        Initialize database engine and session factory, create tables and
        seed the country pool.

        A server database that cannot be reached falls back to SQLite
        in-memory so the app can still start in development.
        """
        if cls._engine is not None:
            logger.warning("DatabaseManager already initialized")
            return

        if config is None:
            config = DatabaseConfig()

        logger.info("Initializing delegation database...")

        if config.is_sqlite:
            cls._engine = cls._create_sqlite_engine(config.connection_string, config)
            cls._db_type = "sqlite"
        else:
            try:
                cls._engine = cls._create_engine(config.connection_string, config)
                with cls._engine.connect() as conn:
                    conn.execute(text("SELECT 1"))
                cls._db_type = cls._engine.dialect.name
                logger.info(f"✓ Using {cls._db_type}")
            except Exception as e:
                logger.error(f"❌ Database connection failed: {e}")
                logger.warning("⚠️  Falling back to SQLite in-memory...")
                cls._engine = cls._create_sqlite_engine("sqlite:///:memory:", config)
                cls._db_type = "sqlite"

        cls._SessionLocal = sessionmaker(
            autocommit=False,
            autoflush=False,
            bind=cls._engine,
            expire_on_commit=False
        )

        cls.create_tables()
        cls._validate_schema()

        from delegation.config import DelegationSettings
        if seed_countries is None:
            seed_countries = DelegationSettings().seed_countries
        cls.seed_countries(seed_countries)
        logger.info("✓ Delegation database initialized successfully")

    @classmethod
    def _create_engine(cls, connection_uri: str, config: DatabaseConfig):
        """Create SQLAlchemy engine with pooling"""
        return create_engine(
            connection_uri,
            poolclass=pool.QueuePool,
            pool_size=config.pool_size,
            max_overflow=config.max_overflow,
            pool_recycle=config.pool_recycle,
            pool_pre_ping=True,
            echo=config.echo,
            pool_timeout=30,
        )

    @classmethod
    def _create_sqlite_engine(cls, connection_uri: str, config: DatabaseConfig):
        """Create a SQLite engine usable from request threads"""
        kwargs = {
            "echo": config.echo,
            "connect_args": {"check_same_thread": False, "timeout": config.sqlite_timeout},
        }
        # Every connection to :memory: is a new database, so share one
        if ":memory:" in connection_uri:
            kwargs["poolclass"] = pool.StaticPool
        logger.info(f"🔄 Using SQLite database ({connection_uri})")
        return create_engine(connection_uri, **kwargs)

    @classmethod
    def _validate_schema(cls):
        """Validate database schema matches SQLAlchemy models"""
        if cls._engine is None:
            logger.warning("Cannot validate schema: engine not initialized")
            return

        inspector = inspect(cls._engine)

        for model_table_name, model_table in Base.metadata.tables.items():
            if model_table_name not in inspector.get_table_names():
                logger.debug(f"Table not yet created: {model_table_name}")
                continue

            existing_columns = {
                col['name'] for col in inspector.get_columns(model_table_name)
            }
            model_columns = {col.name for col in model_table.columns}

            missing_in_db = model_columns - existing_columns
            extra_in_db = existing_columns - model_columns

            if missing_in_db or extra_in_db:
                error_msg = f"Schema mismatch for table '{model_table_name}':\n"
                if missing_in_db:
                    error_msg += f" Missing in DB: {missing_in_db}\n"
                if extra_in_db:
                    error_msg += f" Extra in DB: {extra_in_db}\n"
                error_msg += " Action: Run database migrations or recreate the table."
                logger.error(error_msg)
                raise RuntimeError(error_msg)

        logger.info("✓ Database schema validation passed")

    @classmethod
    def create_tables(cls):
        """Create all tables if they don't exist (idempotent)"""
        if cls._engine is None:
            raise RuntimeError("Database not initialized. Call initialize() first.")

        inspector = inspect(cls._engine)
        existing_tables = set(inspector.get_table_names())

        for table_name in cls.table_creation_order:
            table = Base.metadata.tables[table_name]

            if table_name not in existing_tables:
                table.create(cls._engine, checkfirst=True)
                existing_tables.add(table_name)
                logger.info(f"✓ Created table: {table_name}")
            else:
                logger.info(f"✓ Table already exists: {table_name}")

    @classmethod
    def seed_countries(cls, names: List[str]) -> List[str]:
        """
        Insert the configured countries that are missing (idempotent).

        Returns:
            Names that were inserted by this call
        """
        session = cls.session()
        try:
            existing = set(session.scalars(select(Country.name)).all())
            created = [name for name in dict.fromkeys(names) if name not in existing]
            for name in created:
                session.add(Country(name=name))
            session.commit()

            if created:
                logger.info(f"✓ Seeded countries: {created}")
            else:
                logger.info("✓ Country pool already seeded")
            return created
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Error seeding countries: {e}")
            raise
        finally:
            session.close()

    @classmethod
    def dispose(cls):
        """Release the engine so initialize() can be called again"""
        if cls._engine is not None:
            cls._engine.dispose()
        cls._engine = None
        cls._SessionLocal = None
        cls._db_type = None

    @classmethod
    def session(cls) -> Session:
        """Open a new session (caller closes it)"""
        if cls._SessionLocal is None:
            raise RuntimeError("Database not initialized. Call initialize() first.")
        return cls._SessionLocal()

    @classmethod
    def get_session(cls) -> Generator[Session, None, None]:
        """
        FastAPI dependency for getting a database session.

        Commits when the request handler returns, rolls back when it raises.

        Yields:
            SQLAlchemy Session
        """
        session = cls.session()
        try:
            yield session
            try:
                session.commit()
            except SQLAlchemyError as e:
                session.rollback()
                logger.error(f"Commit failed: {e}")
                raise
        except Exception as e:
            try:
                session.rollback()
            except Exception as rollback_error:
                logger.error(f"Rollback failed: {rollback_error}")
            logger.debug(f"Session rolled back: {e}")
            raise
        finally:
            session.close()

    @classmethod
    def health_check(cls) -> bool:
        """Check if database is healthy"""
        try:
            if cls._SessionLocal is None:
                return False

            session = cls._SessionLocal()
            try:
                session.execute(text("SELECT 1"))
            finally:
                session.close()
            return True
        except SQLAlchemyError as e:
            logger.error(f"❌ Database health check failed: {e}")
            return False

    @classmethod
    def backend(cls) -> Optional[str]:
        """Dialect in use ("sqlite", "postgresql", ...) or None before initialize()"""
        return cls._db_type


def get_db() -> Generator[Session, None, None]:
    """
    FastAPI dependency for database sessions.

    Usage:
        @router.post("/api/endpoint")
        def endpoint(db: Session = Depends(get_db)):
            ...
    """
    yield from DatabaseManager.get_session()
