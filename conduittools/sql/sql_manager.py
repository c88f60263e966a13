from importlib import resources
from typing import Optional, List
from loguru import logger
import traceback
import sqlparse

class SQLManager:
    """Loads and parses the SQL scripts shipped in the conduittools.sql package"""

    def __init__(self):
        self._cache: dict[tuple[str, str], str] = {}

    def load_query(self, category: str, name: str) -> str:
        """Load SQL query from file

        Args:
            category: The category of SQL (e.g., 'init', 'queries')
            name: The name of the SQL file without extension

        Returns:
            str: The contents of the SQL file
        """
        cache_key = (category, name)
        if cache_key in self._cache:
            return self._cache[cache_key]

        package_path = f"conduittools.sql.{category}"
        try:
            with resources.files(package_path).joinpath(f"{name}.sql").open('r') as f:
                query = f.read()
        except Exception:
            logger.error(f"Failed to load SQL file: {name}.sql from {package_path}")
            logger.error(traceback.format_exc())
            raise

        self._cache[cache_key] = query
        return query

    def load_statements(self, category: str, name: str) -> List[str]:
        """Load and parse SQL file into individual statements

        Args:
            category: The category of SQL (e.g., 'init', 'queries')
            name: The name of the SQL file without extension

        Returns:
            List[str]: List of individual SQL statements
        """
        raw_sql = self.load_query(category, name)
        statements = sqlparse.split(raw_sql)
        return [stmt for stmt in statements if stmt.strip()]

    def get_table_names(self, category: str, name: str) -> List[str]:
        """Extract table names from CREATE TABLE statements in SQL file"""
        statements = self.load_statements(category, name)
        return [name for stmt in statements if stmt and (name := self._get_table_name_from_statement(stmt))]

    def _get_table_name_from_statement(self, statement: str) -> Optional[str]:
        """Extract table name from CREATE TABLE statement"""
        parsed = sqlparse.parse(statement)[0]
        if (parsed.get_type() == 'CREATE' and any(token.value.upper() == 'TABLE' for token in parsed.tokens)):
            for i, token in enumerate(parsed.tokens):
                if token.value.upper() == 'TABLE':
                    for next_token in parsed.tokens[i+1:]:  # Look at subsequent tokens
                        match next_token:
                            case _ if next_token.ttype == sqlparse.tokens.Whitespace:
                                continue
                            case _ if next_token.value.upper() in {'IF', 'NOT', 'EXISTS'}:
                                continue
                            case _:
                                # Identifier tokens may carry the column list, e.g. "payments (...)"
                                return next_token.value.split('(')[0].strip().strip('"').split('.')[-1]
        return None
