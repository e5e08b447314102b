#!/usr/bin/env python3
"""Entity graph batch helper.

The language-model extractor runs elsewhere; this script covers the graph
side of the batch job: list which source records still need extraction,
apply a saved extractor reply for one record, and show graph stats.

Usage:
    python scripts/sync_entities.py pending --type email --limit 5
    python scripts/sync_entities.py apply --type email --id msg-42 reply.json
    python scripts/sync_entities.py stats
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from entity_graph.config import load_config
from entity_graph.extraction import parse_extraction_response
from entity_graph.graph import KnowledgeGraph
from entity_graph.models import SOURCE_TYPES
from entity_graph.sync import DEFAULT_SOURCE_TYPES

logger = logging.getLogger("sync_entities")


def cmd_pending(graph: KnowledgeGraph, args: argparse.Namespace) -> int:
    source_types = [args.type] if args.type else list(DEFAULT_SOURCE_TYPES)
    limit = args.limit or graph.config.sync_batch_size
    pending = {st: graph.get_unprocessed_sources(st, limit) for st in source_types}
    print(json.dumps(pending, indent=2))
    return 0


def cmd_apply(graph: KnowledgeGraph, args: argparse.Namespace) -> int:
    reply = Path(args.reply).read_text(encoding="utf-8")
    result = parse_extraction_response(reply)
    entities, relationships = graph.apply_extraction(result, args.type, args.id)
    graph.mark_source_processed(args.type, args.id, len(entities), len(relationships))
    logger.info(
        "Applied %s %s: %d entities, %d relationships",
        args.type, args.id, len(entities), len(relationships),
    )
    print(json.dumps({
        "entities": [e.to_dict() for e in entities],
        "relationships": [r.to_dict() for r in relationships],
    }, indent=2, default=str))
    return 0


def cmd_stats(graph: KnowledgeGraph, args: argparse.Namespace) -> int:
    print(json.dumps(graph.stats(), indent=2))
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(description="Entity graph batch helper")
    parser.add_argument("--db", help="Database path (default: ENTITY_GRAPH_DB)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose logging")
    sub = parser.add_subparsers(dest="command", required=True)

    p_pending = sub.add_parser("pending", help="List unprocessed source records")
    p_pending.add_argument("--type", choices=SOURCE_TYPES, help="Source type (default: email, calendar_event, task)")
    p_pending.add_argument("--limit", type=int, help="Records per type (default: sync batch size)")

    p_apply = sub.add_parser("apply", help="Apply a saved extractor reply to one source record")
    p_apply.add_argument("--type", choices=SOURCE_TYPES, required=True)
    p_apply.add_argument("--id", required=True, help="Source record id")
    p_apply.add_argument("reply", help="File holding the extractor's reply (JSON, possibly wrapped in text)")

    sub.add_parser("stats", help="Show graph counts")

    args = parser.parse_args()

    cfg = load_config()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else getattr(logging, cfg.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(message)s",
    )
    if args.db:
        cfg.db_path = args.db

    errors = cfg.validate()
    if errors:
        logger.warning("Config validation warnings: %s", errors)

    graph = KnowledgeGraph.from_config(cfg)
    try:
        handler = {"pending": cmd_pending, "apply": cmd_apply, "stats": cmd_stats}[args.command]
        return handler(graph, args)
    finally:
        graph.close()


if __name__ == "__main__":
    sys.exit(main())
