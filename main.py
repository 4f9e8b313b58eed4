"""Command-line entry point for ingesting documents and querying RAGEngine."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from dataclasses import asdict
from pathlib import Path
from typing import TYPE_CHECKING

from ragengine.config import config
from ragengine.document_processing import DocumentLoader
from ragengine.errors import (
    CompletionResponseError,
    DocumentValidationError,
    EmbeddingResponseError,
)
from ragengine.models import (
    CONTENT_TYPES,
    DEFAULT_CONTENT_TYPE,
    DEFAULT_NAMESPACE,
    KNOWN_DOMAINS,
    Document,
    DocumentMetadata,
)
from ragengine.pipeline import RAGPipeline

if TYPE_CHECKING:
    from collections.abc import Sequence
    from logging import Logger

EXIT_OK = 0
EXIT_INVALID = 1
EXIT_UPSTREAM = 2


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Build the CLI parser and read command-line arguments."""  # noqa: DOC201
    parser = argparse.ArgumentParser(
        description="Ingest documents into RAGEngine and ask it questions.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    ingest = subparsers.add_parser("ingest", help="Index a .txt, .md or .pdf file.")
    ingest.add_argument("path", type=Path, help="Document to ingest.")
    ingest.add_argument(
        "--id", dest="document_id", help="Document id (default: file stem)."
    )
    ingest.add_argument(
        "--domain",
        choices=KNOWN_DOMAINS,
        default=DEFAULT_NAMESPACE,
        help="Knowledge domain (default: general).",
    )
    ingest.add_argument("--source", help="Source label (default: file name).")
    ingest.add_argument(
        "--content-type",
        choices=CONTENT_TYPES,
        default=DEFAULT_CONTENT_TYPE,
        help="Content type (default: text).",
    )
    ingest.add_argument(
        "--tag",
        dest="tags",
        action="append",
        default=[],
        help="Tag to attach; repeat for several tags.",
    )

    query = subparsers.add_parser("query", help="Ask a question.")
    query.add_argument("text", help="Question to answer.")
    query.add_argument("--domain", choices=KNOWN_DOMAINS, help="Force a domain.")
    query.add_argument(
        "--json",
        dest="as_json",
        action="store_true",
        help="Print the full response as JSON.",
    )

    subparsers.add_parser("status", help="Show service health and index stats.")

    remove = subparsers.add_parser("remove", help="Remove a document's chunks.")
    remove.add_argument("document_id", help="Document id to remove.")
    remove.add_argument(
        "--domain", choices=KNOWN_DOMAINS, help="Namespace to remove from."
    )

    return parser.parse_args(argv)


def load_document(args: argparse.Namespace) -> Document:
    """Read the file named on the command line into a Document."""  # noqa: DOC201
    path: Path = args.path
    content = DocumentLoader.load_document(path)
    return Document(
        id=args.document_id or path.stem,
        content=content,
        metadata=DocumentMetadata(
            domain=args.domain,
            source=args.source or path.name,
            content_type=args.content_type,
            tags=list(args.tags),
        ),
    )


async def run_command(args: argparse.Namespace, pipeline: RAGPipeline) -> int:
    """Run one subcommand and print its result."""  # noqa: DOC201
    if args.command == "ingest":
        document = load_document(args)
        chunks = await pipeline.add_document(document)
        print(
            f"Indexed {document.id} as {len(chunks)} chunks "
            f"in {document.metadata.domain}"
        )
    elif args.command == "query":
        response = await pipeline.query(args.text, domain=args.domain)
        if args.as_json:
            print(json.dumps(response.to_dict(), indent=2))
        else:
            print(response.answer)
            print()
            print(f"Confidence: {response.confidence:.2f}")
            for source in response.sources:
                print(f"  [{source.score:.3f}] {source.id}")
    elif args.command == "status":
        status = await pipeline.get_status()
        print(json.dumps(asdict(status), indent=2))
        return EXIT_OK if status.is_ready else EXIT_UPSTREAM
    elif args.command == "remove":
        removed = await pipeline.remove_document(args.document_id, domain=args.domain)
        print(f"Removed {removed} chunks of {args.document_id}")
    return EXIT_OK


async def run(args: argparse.Namespace, logger: Logger) -> int:
    """Run the command and map failures to exit codes."""  # noqa: DOC201
    try:
        pipeline = RAGPipeline.from_config()
    except ValueError:
        logger.exception("Configuration invalid")
        return EXIT_INVALID

    try:
        if args.command == "status":
            await pipeline.vector_store.initialize()
        else:
            await pipeline.initialize()
        return await run_command(args, pipeline)
    except (CompletionResponseError, EmbeddingResponseError):
        logger.exception("Upstream service returned an unusable response")
        return EXIT_UPSTREAM
    except (DocumentValidationError, ValueError, OSError):
        logger.exception("Invalid input")
        return EXIT_INVALID
    except Exception:
        logger.exception("Command %s failed", args.command)
        return EXIT_UPSTREAM
    finally:
        await pipeline.close()


def main(argv: Sequence[str] | None = None) -> int:
    """Validate configuration and run the requested command."""  # noqa: DOC201
    args = parse_args(argv)

    config.setup_logging()
    logger = config.get_logger(__name__)

    try:
        config.validate()
    except ValueError:
        logger.exception("Configuration invalid")
        return EXIT_INVALID

    try:
        return asyncio.run(run(args, logger))
    except KeyboardInterrupt:
        logger.info("RAGEngine stopped by user")
        return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
