#!/usr/bin/env python3
"""Initialize the search_documents schema with the configured vector dimension."""

import asyncio

import asyncpg

from toki_search.common.config import StoreConfig
from toki_search.document_store.pgvector import schema_statements


async def init_database():
    """Create the pgvector extension, enum, table and indexes."""
    config = StoreConfig()
    vector_dimension = config.toki_vector_dimension

    print(f"Initializing search schema with vector dimension: {vector_dimension}")

    conn = await asyncpg.connect(config.toki_search_db_dsn)

    try:
        statements = schema_statements(vector_dimension)

        await conn.execute(statements[0])
        print("✓ pgvector extension enabled")

        await conn.execute(statements[1])
        print("✓ search_source enum ready")

        await conn.execute(statements[2])
        print(f"✓ search_documents table created with vector dimension {vector_dimension}")

        for statement in statements[3:]:
            await conn.execute(statement)
        print("✓ indexes created")

        print("Search schema initialization completed successfully!")

    finally:
        await conn.close()


if __name__ == "__main__":
    asyncio.run(init_database())
