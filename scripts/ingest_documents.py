#!/usr/bin/env python3
"""Document ingestion CLI script.

This script adds text and Markdown files to a canon project as documents and
runs LLM extraction on each of them. Extracted entities and facts are stored as
pending and can then be reviewed with scripts/review_canon.py.

Supported inputs: `.txt`, `.md`, `.markdown`

Usage:
    python scripts/ingest_documents.py --project <id> chapter1.md chapter2.md
    python scripts/ingest_documents.py --new-project "Westeros" --directory drafts/
    python scripts/ingest_documents.py --project <id> --no-extract notes.txt

Options:
    --project, -p: Existing project id
    --new-project: Create a project with this name and ingest into it
    --directory, -d: Process documents in directory
    --user, -u: Acting user (default: $CANON_USER or "local")
    --config, -c: Path to config file (default: config/config.yaml)
    --no-extract: Only add the documents, skip extraction
    --verbose, -v: Enable verbose logging
    --dry-run: Show what would be processed without actually doing it
"""

import argparse
import os
import sys
import time
from pathlib import Path

# Make the repository root importable when run as a script
sys.path.insert(0, str(Path(__file__).parent.parent))

from loguru import logger  # noqa: E402

from src.curation.access import Caller  # noqa: E402
from src.curation.projects import ProjectService  # noqa: E402
from src.ingestion.documents import DocumentService  # noqa: E402
from src.pipeline.extraction_pipeline import ExtractionPipeline  # noqa: E402
from src.storage.canon_store import CanonStore  # noqa: E402
from src.storage.schemas import ContentType  # noqa: E402
from src.utils.config import load_config  # noqa: E402
from src.utils.errors import CanonError  # noqa: E402
from src.utils.logging_setup import setup_logging  # noqa: E402

TEXT_SUFFIXES = {".txt": ContentType.TEXT, ".md": ContentType.MARKDOWN, ".markdown": ContentType.MARKDOWN}


def find_document_files(paths: list[Path]) -> list[Path]:
    """Find all supported document files from the given paths.

    Args:
        paths: List of file or directory paths

    Returns:
        Sorted, de-duplicated list of document file paths
    """
    document_files: list[Path] = []

    for path in paths:
        if path.is_file():
            if path.suffix.lower() in TEXT_SUFFIXES:
                document_files.append(path)
            else:
                logger.warning(f"Skipping unsupported file: {path}")
        elif path.is_dir():
            for suffix in sorted(TEXT_SUFFIXES):
                for file_path in path.rglob(f"*{suffix}"):
                    document_files.append(file_path)
        else:
            logger.warning(f"Path does not exist: {path}")

    return sorted({p.resolve() for p in document_files})


def main() -> int:
    """Main CLI function."""
    parser = argparse.ArgumentParser(
        description="Add documents to a canon project and extract entities and facts",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("paths", nargs="*", type=Path, help="Files or directories to process")
    parser.add_argument(
        "--directory", "-d", type=Path, help="Directory containing files to process"
    )
    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--project", "-p", help="Existing project id")
    target.add_argument("--new-project", help="Create a project with this name")
    parser.add_argument(
        "--user", "-u", default=os.getenv("CANON_USER", "local"), help="Acting user"
    )
    parser.add_argument(
        "--config",
        "-c",
        type=Path,
        default=Path("config/config.yaml"),
        help="Path to configuration file (default: config/config.yaml)",
    )
    parser.add_argument(
        "--no-extract", action="store_true", help="Add documents without running extraction"
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be processed without actually doing it",
    )

    args = parser.parse_args()

    paths_to_process = args.paths or []
    if args.directory:
        paths_to_process.append(args.directory)

    if not paths_to_process:
        parser.error("No files or directories specified. Use --help for usage.")

    store = None
    try:
        logger.info(f"Loading configuration from {args.config}")
        config = load_config(args.config, validate=not (args.no_extract or args.dry_run))
        setup_logging(config.logging, verbose=args.verbose)

        files = find_document_files(paths_to_process)
        if not files:
            logger.error("No supported documents found to process")
            return 1

        logger.info(f"Found {len(files)} documents to process")

        if args.dry_run:
            logger.info("Dry run mode - would process:")
            for path in files:
                logger.info(f"  {path}")
            return 0

        store = CanonStore(config.storage).connect()
        caller = Caller(user_id=args.user)
        project_id = args.project or ProjectService(store).create(caller, args.new_project)
        documents = DocumentService(store)
        pipeline = None if args.no_extract else ExtractionPipeline.from_config(config, store)

        start_time = time.time()
        succeeded, failed = 0, 0
        entities_created, facts_created = 0, 0

        for i, path in enumerate(files, 1):
            logger.info(f"Processing {i}/{len(files)}: {path.name}")
            try:
                document_id = documents.create(
                    caller,
                    project_id,
                    path.stem,
                    content=path.read_text(encoding="utf-8"),
                    content_type=TEXT_SUFFIXES[path.suffix.lower()],
                )
                if pipeline is not None:
                    result = pipeline.chunk_and_extract(caller, document_id)
                    entities_created += result.summary.entities_created
                    facts_created += result.summary.facts_created
                    logger.success(
                        f"✓ {path.name}: {result.chunks_processed} chunks, "
                        f"{result.processing_time:.2f}s"
                    )
                succeeded += 1
            except CanonError as exc:
                failed += 1
                logger.error(f"✗ {path.name}: {exc.message}")

        total_time = time.time() - start_time

        logger.info(
            f"Project {project_id}: {succeeded}/{len(files)} documents ingested, {failed} failed"
        )
        logger.info(
            f"Pending for review: {entities_created} entities, {facts_created} facts "
            f"({total_time:.2f}s)"
        )

        return 0 if succeeded > 0 else 1

    except Exception as e:
        logger.error(f"Ingestion failed: {e}")
        return 1
    finally:
        if store is not None:
            store.close()


if __name__ == "__main__":
    sys.exit(main())
