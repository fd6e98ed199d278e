"""Database configuration and initialization."""
from sqlalchemy import create_engine, BigInteger, Integer
from sqlalchemy.orm import scoped_session, sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool

# Create SQLAlchemy base
Base = declarative_base()

# Global session and engine
engine = None
db_session = None


def init_db(app):
    """Initialize database connection."""
    global engine, db_session

    database_uri = app.config['SQLALCHEMY_DATABASE_URI']

    if database_uri.startswith('sqlite'):
        # Single shared connection so in-memory databases survive across sessions
        engine = create_engine(
            database_uri,
            echo=app.config.get('SQLALCHEMY_ECHO', False),
            connect_args={'check_same_thread': False},
            poolclass=StaticPool
        )
    else:
        engine = create_engine(
            database_uri,
            echo=app.config.get('SQLALCHEMY_ECHO', False),
            pool_pre_ping=True,  # Enable connection health checks
            pool_size=10,
            max_overflow=20
        )

    db_session = scoped_session(
        sessionmaker(autocommit=False, autoflush=False, bind=engine)
    )

    # Register teardown
    @app.teardown_appcontext
    def shutdown_session(exception=None):
        """Close database session and rollback on error."""
        if exception:
            db_session.rollback()
        db_session.remove()


def create_all():
    """Create every table known to the models (tests and first boot)."""
    import app.models  # noqa: F401  (registers the mappers)
    Base.metadata.create_all(bind=engine)


def drop_all():
    """Drop every table known to the models."""
    import app.models  # noqa: F401
    Base.metadata.drop_all(bind=engine)


def get_session():
    """Get database session."""
    return db_session


# BIGINT primary keys do not autoincrement on SQLite; fall back to INTEGER there
BigIntegerType = BigInteger().with_variant(Integer, 'sqlite')
