"""Main module for the photo pipeline CLI."""

import argparse
import asyncio
import mimetypes
import os
import sys
import uuid
from typing import List, Optional

from dotenv import load_dotenv

from . import __version__
from .core.config import PipelineSettings
from .core.exceptions import PhotoPipelineError
from .core.factories import Pipeline, ProcessingPipelineFactory
from .core.logging_config import setup_logger
from .core.models import ImageJobData, Photo, PhotoStatus, QueueMessage
from .core.operations import PhotoRepairService, find_stale_photos, reprocess_photo
from .queues import LocalJobQueue, enqueue_with_timeout
from .storage import find_original, save_original


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="photo-pipeline",
        description="Photo Pipeline - derivatives, EXIF and placeholders for uploaded photos",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Consume image jobs until interrupted
  photo-pipeline worker

  # Add a photo and process it
  photo-pipeline ingest ./DSC_0042.jpg --title "Harbour at dusk"

  # Retry a failed photo
  photo-pipeline reprocess 3f2b6c1e-8a4d-4e1f-9b7a-2c5d8e9f0a1b

  # Fill in EXIF for photos uploaded before extraction existed
  photo-pipeline backfill exif
        """,
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    parser.add_argument("--env-file", default=None, help="Path to a .env file (default: ./.env)")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("worker", help="Consume image jobs until interrupted")

    process_parser = subparsers.add_parser("process", help="Run one image job in the foreground")
    process_parser.add_argument("--photo-id", required=True, help="Photo id")
    process_parser.add_argument("--original-key", required=True, help="Storage key of the original")

    ingest_parser = subparsers.add_parser("ingest", help="Store a new original and queue it")
    ingest_parser.add_argument("path", help="Image file to add")
    ingest_parser.add_argument("--title", default=None, help="Photo title")

    reprocess_parser = subparsers.add_parser("reprocess", help="Re-enqueue a failed or stale photo")
    reprocess_parser.add_argument("photo_id", help="Photo id")

    subparsers.add_parser("stale", help="List photos stuck in processing")

    backfill_parser = subparsers.add_parser("backfill", help="Fill in missing photo metadata")
    backfill_parser.add_argument("field", choices=["exif", "blur", "dimensions"])

    subparsers.add_parser("version", help="Show version information")
    return parser


async def _drain_local_queue(pipeline: Pipeline) -> None:
    # The in-process queue does not outlive this command
    if not isinstance(pipeline.queue, LocalJobQueue):
        return
    worker = ProcessingPipelineFactory.create_worker(pipeline)
    while len(pipeline.queue):
        await worker.run_once()


async def _resume_processing(pipeline: Pipeline) -> None:
    """Requeue photos left in processing by a previous in-process worker."""
    if not isinstance(pipeline.queue, LocalJobQueue):
        return
    for photo in await pipeline.repository.find_by_status(PhotoStatus.PROCESSING):
        key = await find_original(pipeline.storage, photo.id)
        if key is not None:
            await pipeline.queue.enqueue(photo.id, key)


async def run_worker(pipeline: Pipeline) -> int:
    await _resume_processing(pipeline)
    await ProcessingPipelineFactory.create_worker(pipeline).run_forever()
    return 0


async def run_process(pipeline: Pipeline, photo_id: str, original_key: str) -> int:
    message = QueueMessage(
        message_id=f"cli-{photo_id}",
        job=ImageJobData(photo_id=photo_id, original_key=original_key),
    )
    ok = await pipeline.reconciler.process_message(message)
    print(f"Photo {photo_id}: {'ready' if ok else 'error'}")
    return 0 if ok else 1


async def run_ingest(pipeline: Pipeline, path: str, title: Optional[str]) -> int:
    with open(path, "rb") as f:
        data = f.read()
    photo = Photo(id=str(uuid.uuid4()), original_filename=os.path.basename(path), title=title)
    content_type = mimetypes.guess_type(path)[0] or "application/octet-stream"
    key = await save_original(pipeline.storage, photo.id, photo.original_filename, data, content_type)
    await pipeline.repository.save(photo)
    job_id = await enqueue_with_timeout(
        pipeline.queue, photo.id, key, timeout=pipeline.settings.enqueue_timeout_seconds
    )
    print(f"Photo {photo.id} queued as {job_id}")
    await _drain_local_queue(pipeline)
    return 0


async def run_reprocess(pipeline: Pipeline, photo_id: str) -> int:
    photo = await reprocess_photo(
        photo_id,
        pipeline.repository,
        pipeline.storage,
        pipeline.queue,
        pipeline.logger,
        enqueue_timeout=pipeline.settings.enqueue_timeout_seconds,
    )
    print(f"Photo {photo.id}: {photo.status.value}")
    await _drain_local_queue(pipeline)
    return 0


async def run_stale(pipeline: Pipeline) -> int:
    stale = await find_stale_photos(pipeline.repository, pipeline.settings.stale_threshold)
    for photo in stale:
        print(f"{photo.id}\tprocessing since {photo.updated_at.isoformat()}")
    print(f"{len(stale)} stale photo(s)")
    return 0


async def run_backfill(pipeline: Pipeline, field_name: str) -> int:
    service = PhotoRepairService(
        pipeline.storage, pipeline.repository, pipeline.logger, temp_root=pipeline.settings.temp_root
    )
    report = await service.backfill(field_name)
    print(f"Backfill {field_name} complete:")
    print(f"  Processed: {report.processed}")
    print(f"  Skipped:   {report.skipped}")
    print(f"  Failed:    {report.failed}")
    print(f"  Total:     {report.total}")
    return 1 if report.failed else 0


def main(argv: Optional[List[str]] = None) -> None:
    """
    Entry point for the command-line interface of the photo pipeline.

    Loads ``.env``, builds settings from the environment and dispatches to
    the selected subcommand. Pipeline errors are reported on stderr with
    exit status 1.
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "version":
        print("Photo Pipeline CLI")
        print(f"Version {__version__}")
        sys.exit(0)
    if args.command is None:
        parser.print_help()
        sys.exit(1)

    load_dotenv(args.env_file)
    setup_logger(level="DEBUG" if args.debug else None)

    try:
        settings = PipelineSettings.from_env()
        pipeline = ProcessingPipelineFactory.create_pipeline(settings)
        if args.command == "worker":
            code = asyncio.run(run_worker(pipeline))
        elif args.command == "process":
            code = asyncio.run(run_process(pipeline, args.photo_id, args.original_key))
        elif args.command == "ingest":
            code = asyncio.run(run_ingest(pipeline, args.path, args.title))
        elif args.command == "reprocess":
            code = asyncio.run(run_reprocess(pipeline, args.photo_id))
        elif args.command == "stale":
            code = asyncio.run(run_stale(pipeline))
        else:
            code = asyncio.run(run_backfill(pipeline, args.field))
    except (PhotoPipelineError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    sys.exit(code)


if __name__ == "__main__":
    main()
