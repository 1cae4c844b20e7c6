#!/usr/bin/env python3
"""Script to query the search index or print its document counts."""

import argparse
import asyncio
import json
import sys
from typing import Optional

import structlog

from toki_search.common.config import SearchConfig
from toki_search.common.errors import SearchError
from toki_search.common.logging import configure_logging_from_config
from toki_search.common.tracing import configure_tracing_from_config
from toki_search.document_store.factory import create_document_store_from_config
from toki_search.embedding.factory import create_embedder_from_config
from toki_search.search.service import SearchService

logger = structlog.get_logger("search_index")


async def run_command(
    command: str,
    query: str = "",
    limit: Optional[int] = None,
    config: Optional[SearchConfig] = None
) -> bool:
    """Run ``search`` or ``stats`` against the configured backends."""
    if not config:
        config = SearchConfig()

    store = create_document_store_from_config(config)
    embedder = create_embedder_from_config(config)
    service = SearchService.from_config(config, embedder, store)

    try:
        if command == "stats":
            print(json.dumps((await service.stats()).to_dict(), indent=2))
        else:
            results = await service.search(query, limit)
            print(json.dumps([result.to_dict() for result in results], indent=2))
        return True

    except SearchError as e:
        logger.error("Command failed", command=command, error=str(e))
        return False

    finally:
        await embedder.close()
        await store.close()


def main():
    """Main function for CLI."""
    parser = argparse.ArgumentParser(description="Query the PR and work item search index")
    subparsers = parser.add_subparsers(dest="command", required=True)

    search_parser = subparsers.add_parser("search", help="Run a natural-language search")
    search_parser.add_argument("query", help="Query text, e.g. 'priority 1 bugs in Lerum'")
    search_parser.add_argument("--limit", type=int, help="Maximum number of results")

    subparsers.add_parser("stats", help="Print document counts")

    args = parser.parse_args()

    config = SearchConfig()
    configure_logging_from_config("search_index", config)
    configure_tracing_from_config(config)

    try:
        success = asyncio.run(run_command(
            args.command,
            query=getattr(args, "query", ""),
            limit=getattr(args, "limit", None),
            config=config
        ))
    except SearchError as e:
        print(f"Failed to initialize search: {e}")
        sys.exit(1)

    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
