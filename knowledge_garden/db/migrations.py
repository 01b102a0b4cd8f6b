"""
Schema bootstrap for the Postgres backend.
"""
import os
import time
from typing import Optional

from sqlalchemy import text

from ..logging_config import logger
from ..models import EMBED_DIM, Base

SCRIPTS_DIR = os.path.join(os.path.dirname(__file__), "scripts")

# pgvector stores the declared dimension as the column's type modifier
VECTOR_DIM_SQL = text("""
    SELECT atttypmod
    FROM pg_attribute
    WHERE attrelid = to_regclass('embeddings') AND attname = 'embedding'
""")


def pending_scripts(directory: str = SCRIPTS_DIR):
    """SQL scripts in apply order (sorted by their numeric filename prefix)."""
    if not os.path.isdir(directory):
        logger.warning("SQL scripts directory missing", path=directory)
        return []
    return [os.path.join(directory, name) for name in sorted(os.listdir(directory)) if name.endswith(".sql")]


def check_vector_dimension(conn, expected: int) -> Optional[int]:
    """
    Compare the existing embeddings column against ``expected``.

    Returns the stored dimension (None when the table doesn't exist yet);
    raises RuntimeError when it differs.
    """
    stored = conn.execute(VECTOR_DIM_SQL).scalar()
    if stored is None or stored <= 0:
        return None
    if stored != expected:
        raise RuntimeError(
            f"embeddings.embedding is vector({stored}) but EMBED_DIM is {expected}; "
            "re-embed the corpus or restore the previous EMBED_DIM"
        )
    return stored


def run_migrations(engine, directory: str = SCRIPTS_DIR, embed_dim: int = EMBED_DIM) -> int:
    """
    Enable pgvector, create the bucket/resource/embedding tables and apply
    every SQL script in ``directory``. Scripts must be idempotent since they
    run on every startup.

    Returns the number of scripts applied.
    """
    with engine.begin() as conn:
        conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
        check_vector_dimension(conn, embed_dim)
    Base.metadata.create_all(engine)

    scripts = pending_scripts(directory)
    for path in scripts:
        started = time.perf_counter()
        with open(path, encoding="utf-8") as f, engine.begin() as conn:
            conn.execute(text(f.read()))
        logger.info("Applied SQL script", file=os.path.basename(path),
                    elapsed_ms=round((time.perf_counter() - started) * 1000, 1))

    return len(scripts)
