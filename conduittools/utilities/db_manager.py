from typing import Optional
import sqlalchemy
from sqlalchemy.pool import StaticPool
from loguru import logger
from conduittools.protocols.credentials import CredentialManager

class DBConnectionManager:
    ''' supports the mirror database, addressed by URL or by a stored connection string credential '''

    def __init__(self, credential_manager: Optional[CredentialManager] = None, url: Optional[str] = None):
        if credential_manager is None and url is None:
            raise ValueError("DBConnectionManager needs a credential manager or an explicit URL")
        self.credential_manager = credential_manager
        self.url = url
        self._engines: dict[str, sqlalchemy.Engine] = {}

    def get_connstring(self, credential_key: Optional[str] = None) -> str:
        """Explicit URL wins; otherwise the connection string is read from credentials"""
        if self.url:
            return self.url
        db_connstring = self.credential_manager.get_credential(credential_key)
        if db_connstring is None:
            raise ValueError(f"Database connection string not found in credentials: {credential_key}")
        return db_connstring

    def spawn_sqlalchemy_db_connection(self, credential_key: Optional[str] = None) -> sqlalchemy.Engine:
        """Create (or reuse) a SQLAlchemy engine for the mirror database"""
        db_connstring = self.get_connstring(credential_key)
        if db_connstring not in self._engines:
            if db_connstring == 'sqlite://' or (db_connstring.startswith('sqlite') and ':memory:' in db_connstring):
                # One shared connection, otherwise each thread would see its own empty database
                engine = sqlalchemy.create_engine(
                    db_connstring,
                    connect_args={'check_same_thread': False},
                    poolclass=StaticPool
                )
            else:
                engine = sqlalchemy.create_engine(db_connstring, pool_pre_ping=True)
            logger.debug(f"DBConnectionManager.spawn_sqlalchemy_db_connection: Created engine for {engine.url.render_as_string(hide_password=True)}")
            self._engines[db_connstring] = engine
        return self._engines[db_connstring]

    def close(self):
        """Dispose every engine"""
        for engine in self._engines.values():
            engine.dispose()
        self._engines.clear()
