import os
from typing import Optional

from app.config import load_env_file

try:
    from neo4j import GraphDatabase
except Exception as _import_exc:
    GraphDatabase = None
    _neo4j_import_exc = _import_exc

_driver = None


def _ensure_neo4j_available():
    if GraphDatabase is None:
        raise RuntimeError(
            "The 'neo4j' Python package is not installed.\n"
            "Install the driver with: pip install neo4j\n"
            f"Import error: {_neo4j_import_exc!r}"
        )


def get_driver():
    """Return the shared Neo4j driver, creating it on first use."""
    global _driver
    _ensure_neo4j_available()
    if _driver is None:
        uri, user, pwd = _get_neo4j_config()
        try:
            _driver = GraphDatabase.driver(uri, auth=(user, pwd))
        except Exception as exc:
            raise RuntimeError(
                f"Failed to create Neo4j driver for URI '{uri}'. Check that the database is running and the credentials are correct.\nError: {exc}"
            ) from exc
    return _driver


def close_driver():
    global _driver
    if _driver is not None:
        _driver.close()
        _driver = None


def run_cypher(query: str, parameters: Optional[dict] = None):
    """Run a Cypher statement and return list of records as dicts.

    Catalog writes are single MERGE statements, so an auto-commit session is
    enough; each call is atomic on its own.
    """
    driver = get_driver()
    with driver.session() as session:
        result = session.run(query, parameters or {})
        return [record.data() for record in result]


def _get_neo4j_config():
    """Return (uri, user, password), loading .env first. Raises when the password is missing."""
    load_env_file()

    uri = os.getenv("NEO4J_URI") or "bolt://localhost:7687"
    user = os.getenv("NEO4J_USER") or "neo4j"
    pwd = os.getenv("NEO4J_PASSWORD")

    if not pwd:
        raise RuntimeError(
            "Neo4j password is missing: set NEO4J_PASSWORD in your environment or in a .env file at the project root.\n"
            "Or run with CATALOG_STORE=memory to ingest without a database."
        )
    return uri, user, pwd
