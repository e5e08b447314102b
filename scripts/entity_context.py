#!/usr/bin/env python3
"""Print what the graph knows about one or more entities.

Usage:
    python scripts/entity_context.py "Jennifer Smith"
    python scripts/entity_context.py --message "What did Jennifer say about Acme Corp?"
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from entity_graph.config import load_config
from entity_graph.extraction import extract_entity_names_from_message
from entity_graph.graph import KnowledgeGraph

logger = logging.getLogger("entity_context")


def main() -> int:
    parser = argparse.ArgumentParser(description="Look up entity context by name")
    parser.add_argument("names", nargs="*", help="Entity names")
    parser.add_argument("--message", help="Chat message to spot entity names in")
    parser.add_argument("--mentions", type=int, help="Recent mentions per entity")
    parser.add_argument("--db", help="Database path (default: ENTITY_GRAPH_DB)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose logging")
    args = parser.parse_args()

    cfg = load_config()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else getattr(logging, cfg.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(message)s",
    )
    if args.db:
        cfg.db_path = args.db
    if args.mentions is not None:
        cfg.mention_context_limit = args.mentions

    errors = cfg.validate()
    if errors:
        logger.warning("Config validation warnings: %s", errors)

    names = list(args.names)
    if args.message:
        names.extend(extract_entity_names_from_message(args.message))
    if not names:
        parser.error("give at least one name or --message")

    graph = KnowledgeGraph.from_config(cfg)
    try:
        contexts = graph.find_entity_contexts(names)
    finally:
        graph.close()

    if not contexts:
        logger.info("No entities found for: %s", ", ".join(names))
        return 1

    print(json.dumps([c.to_dict() for c in contexts], indent=2, ensure_ascii=False))
    return 0


if __name__ == "__main__":
    sys.exit(main())
