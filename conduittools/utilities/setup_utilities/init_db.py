from typing import Optional, Callable
import getpass
import traceback

import sqlalchemy
from sqlalchemy import text
from loguru import logger

from conduittools.configuration.configuration import get_agent_config
from conduittools.sql.sql_manager import SQLManager
from conduittools.utilities.credentials import CredentialManager
from conduittools.utilities.db_manager import DBConnectionManager
import conduittools.configuration.constants as global_constants

def drop_schema(engine: sqlalchemy.Engine, sql_manager: Optional[SQLManager] = None):
    """Drop every mirror table"""
    sql_manager = sql_manager or SQLManager()
    with engine.begin() as connection:
        for statement in sql_manager.load_statements('init', 'drop_tables'):
            connection.execute(text(statement))
    logger.info("drop_schema: Dropped mirror tables")

def create_schema(engine: sqlalchemy.Engine, drop_tables: bool = False, sql_manager: Optional[SQLManager] = None) -> list[str]:
    """Create mirror tables and indexes if they do not exist.

    Args:
        engine: engine for the mirror database
        drop_tables: If True, drops and recreates tables (destructive)

    Returns:
        list[str]: names of the tables defined by the schema
    """
    sql_manager = sql_manager or SQLManager()
    if drop_tables:
        drop_schema(engine, sql_manager)

    with engine.begin() as connection:
        for category in ['create_tables', 'create_indexes']:
            for statement in sql_manager.load_statements('init', category):
                connection.execute(text(statement))

    table_names = sql_manager.get_table_names('init', 'create_tables')
    logger.info(f"create_schema: Mirror schema ready ({', '.join(table_names)})")
    return table_names

def resolve_mirror_url(
        url: Optional[str] = None,
        password_prompt: Callable[[str], str] = getpass.getpass
    ) -> DBConnectionManager:
    """Explicit URL, or the agent node's stored connection string"""
    if url:
        return DBConnectionManager(url=url)

    node_config = get_agent_config()
    if node_config.mirror_url:
        return DBConnectionManager(url=node_config.mirror_url)

    encryption_password = password_prompt("Enter your encryption password: ")
    cm = CredentialManager(password=encryption_password)
    db_manager = DBConnectionManager(credential_manager=cm)
    # Fail early if the credential is missing
    db_manager.get_connstring(node_config.mirror_credential_key)
    return db_manager

def init_database(
        drop_tables: bool = False,
        url: Optional[str] = None,
        input_prompt: Callable[[str], str] = input,
        password_prompt: Callable[[str], str] = getpass.getpass
    ) -> bool:
    """Initialize the mirror database with the required tables and indexes.

    Args:
        drop_tables: If True, drops and recreates tables. If False, only creates if not exist.
                    Default False for safety.
        url: SQLAlchemy URL of the mirror; defaults to the agent node configuration
    """
    try:
        db_manager = resolve_mirror_url(url, password_prompt=password_prompt)
        credential_key = None if db_manager.url else get_agent_config().mirror_credential_key
        engine = db_manager.spawn_sqlalchemy_db_connection(credential_key)

        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except sqlalchemy.exc.SQLAlchemyError as e:
            print(f"\nError connecting to database: {e}")
            print("Please ensure the database exists and you have proper permissions.")
            return False

        if drop_tables:
            confirm = input_prompt("WARNING: This will drop existing mirror tables. Are you sure you want to continue? (y/n): ")
            if confirm.lower() != "y":
                print("Database initialization cancelled.")
                return False

        table_names = create_schema(engine, drop_tables=drop_tables)

        print("\nVerifying table structures:")
        existing = set(sqlalchemy.inspect(engine).get_table_names())
        for table in table_names:
            status = "ok" if table in existing else "MISSING"
            print(f"- {table}: {status}")

        db_manager.close()
        return all(table in existing for table in table_names)

    except FileNotFoundError as e:
        print(f"\n{e}")
        print(f"Pass --url, or create {global_constants.CONFIG_DIR / global_constants.AGENT_CONFIG_FILENAME}.")
        return False
    except Exception as e:
        logger.error(f"init_database: Error initializing database: {e}")
        logger.error(traceback.format_exc())
        return False

def main(drop_tables: bool = False, url: Optional[str] = None):
    if init_database(drop_tables=drop_tables, url=url):
        print("\nMirror database initialized successfully!")
    else:
        print("\nMirror database initialization did not complete.")
