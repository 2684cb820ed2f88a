"""Database configuration and initialization."""
from sqlalchemy import create_engine, event, BigInteger, Integer
from sqlalchemy.orm import scoped_session, sessionmaker, declarative_base

# Create SQLAlchemy base
Base = declarative_base()

# SQLite only autoincrements INTEGER PRIMARY KEY columns
BigIntegerPK = BigInteger().with_variant(Integer, 'sqlite')

# Global session and engine
engine = None
session_factory = None
db_session = None


def init_db(app):
    """Initialize database connection."""
    global engine, session_factory, db_session

    database_uri = app.config['SQLALCHEMY_DATABASE_URI']
    engine_options = {
        'echo': app.config.get('SQLALCHEMY_ECHO', False),
        'pool_pre_ping': True,  # Enable connection health checks
    }
    if database_uri.startswith('sqlite'):
        # SQLite serializes writers; wait instead of failing with "database is locked"
        engine_options['connect_args'] = {'timeout': 30, 'check_same_thread': False}
    else:
        engine_options['pool_size'] = 10
        engine_options['max_overflow'] = 20

    engine = create_engine(database_uri, **engine_options)

    if database_uri.startswith('sqlite'):
        @event.listens_for(engine, 'connect')
        def _sqlite_on_connect(dbapi_connection, connection_record):
            # SQLAlchemy emits BEGIN itself instead of pysqlite's implicit one
            dbapi_connection.isolation_level = None
            cursor = dbapi_connection.cursor()
            cursor.execute('PRAGMA foreign_keys=ON')
            cursor.close()

        @event.listens_for(engine, 'begin')
        def _sqlite_begin_immediate(conn):
            # Writers queue on the busy timeout instead of failing on lock upgrade
            conn.exec_driver_sql('BEGIN IMMEDIATE')

    session_factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    db_session = scoped_session(session_factory)

    Base.query = db_session.query_property()

    # Register teardown
    @app.teardown_appcontext
    def shutdown_session(exception=None):
        """Close database session and rollback on error."""
        if exception:
            db_session.rollback()
        db_session.remove()


def create_schema():
    """Create all tables for the registered models."""
    import backoffice.models  # noqa: F401  (registers mappers on Base)
    Base.metadata.create_all(bind=engine)


def drop_schema():
    """Drop all tables (tests and `flask init-db --drop`)."""
    import backoffice.models  # noqa: F401
    Base.metadata.drop_all(bind=engine)


def get_session():
    """Get database session."""
    return db_session


def new_session():
    """Open an independent session (outside the request scope)."""
    return session_factory()
