"""Unit tests for ImageProcessingJob and PhotoStatusReconciler."""

import asyncio
import os
from datetime import timedelta

import pytest
from PIL import features

from photo_pipeline.core.exceptions import ImageProcessingError, StorageError
from photo_pipeline.core.models import (
    ExifData,
    ImageJobData,
    ImageJobResult,
    Photo,
    PhotoStatus,
    QueueMessage,
    utcnow,
)
from photo_pipeline.core.observability import MetricsCollector
from photo_pipeline.core.services import ImageProcessingJob, PhotoStatusReconciler
from photo_pipeline.testing import (
    ExifFixture,
    FakeLogger,
    InMemoryPhotoRepository,
    InMemoryStorageAdapter,
    create_test_image,
    new_photo_id,
)

requires_avif = pytest.mark.skipif(
    not features.check("avif"), reason="Pillow built without AVIF support"
)


@pytest.fixture
def storage():
    return InMemoryStorageAdapter()


@pytest.fixture
def logger():
    return FakeLogger()


@pytest.fixture
def work_dir(tmp_path):
    path = tmp_path / "work"
    path.mkdir()
    return path


def _store_original(storage, photo_id, data, ext="jpg"):
    key = f"originals/{photo_id}/original.{ext}"
    storage.files[key] = (data, "image/jpeg")
    return ImageJobData(photo_id=photo_id, original_key=key)


class TestImageProcessingJob:
    def test_small_image_yields_metadata_without_derivatives(self, storage, logger, work_dir):
        photo_id = new_photo_id()
        job = _store_original(
            storage, photo_id, create_test_image(8, 6, exif=ExifFixture(make="Canon", model="EOS R5"))
        )

        result = asyncio.run(ImageProcessingJob(storage, logger, str(work_dir)).process(job))

        assert result.photo_id == photo_id
        assert result.derivatives == []
        assert (result.width, result.height) == (8, 6)
        assert result.blur_data_url.startswith("data:image/webp;base64,")
        assert result.exif_data.camera_make == "Canon"
        assert result.exif_data.camera_model == "EOS R5"
        assert storage.keys("processed/") == []

    def test_image_without_exif(self, storage, logger, work_dir):
        job = _store_original(storage, new_photo_id(), create_test_image(8, 6))

        result = asyncio.run(ImageProcessingJob(storage, logger, str(work_dir)).process(job))

        assert result.exif_data is None

    @requires_avif
    def test_uploads_derivatives_with_content_types(self, storage, logger, work_dir):
        photo_id = new_photo_id()
        job = _store_original(storage, photo_id, create_test_image(400, 300))

        result = asyncio.run(ImageProcessingJob(storage, logger, str(work_dir)).process(job))

        assert result.derivatives == [
            f"processed/{photo_id}/300w.webp",
            f"processed/{photo_id}/300w.avif",
        ]
        assert storage.content_type(f"processed/{photo_id}/300w.webp") == "image/webp"
        assert storage.content_type(f"processed/{photo_id}/300w.avif") == "image/avif"
        assert (result.width, result.height) == (400, 300)
        assert any("Generated 2 files" in m for m in logger.messages("INFO"))

    @requires_avif
    def test_dimensions_are_post_orientation(self, storage, logger, work_dir):
        job = _store_original(storage, new_photo_id(), create_test_image(400, 300, exif=ExifFixture(orientation=6)))

        result = asyncio.run(ImageProcessingJob(storage, logger, str(work_dir)).process(job))

        assert (result.width, result.height) == (300, 400)

    def test_missing_original_propagates(self, storage, logger, work_dir):
        job = ImageJobData(photo_id=new_photo_id(), original_key="originals/x/original.jpg")

        with pytest.raises(StorageError, match="File not found"):
            asyncio.run(ImageProcessingJob(storage, logger, str(work_dir)).process(job))

        assert os.listdir(work_dir) == []
        assert "Image job failed" in logger.messages("ERROR")

    def test_corrupt_original_propagates(self, storage, logger, work_dir):
        job = _store_original(storage, new_photo_id(), b"definitely not an image")

        with pytest.raises(ImageProcessingError):
            asyncio.run(ImageProcessingJob(storage, logger, str(work_dir)).process(job))

        assert os.listdir(work_dir) == []

    def test_temp_dir_is_unique_and_removed(self, storage, logger, work_dir):
        photo_id = new_photo_id()
        job = _store_original(storage, photo_id, create_test_image(8, 6))
        seen_dirs = []

        class _Spy(InMemoryStorageAdapter):
            async def get_file(self, key):
                seen_dirs.extend(os.listdir(work_dir))
                return await storage.get_file(key)

        processing_job = ImageProcessingJob(_Spy(), logger, str(work_dir))
        asyncio.run(processing_job.process(job))
        asyncio.run(processing_job.process(job))

        assert len(seen_dirs) == 2
        assert seen_dirs[0] != seen_dirs[1]
        assert all(name.startswith(f"photo-worker-{photo_id}-") for name in seen_dirs)
        assert os.listdir(work_dir) == []

    def test_cleanup_failure_is_logged_not_raised(self, storage, logger, work_dir, monkeypatch):
        def failing_rmtree(path):
            raise OSError("device busy")

        monkeypatch.setattr("photo_pipeline.core.services.shutil.rmtree", failing_rmtree)
        job = _store_original(storage, new_photo_id(), create_test_image(8, 6))

        result = asyncio.run(ImageProcessingJob(storage, logger, str(work_dir)).process(job))

        assert result.width == 8
        warnings = logger.get_logs("WARNING")
        assert warnings and warnings[0]["message"].startswith("Failed to clean up temp dir")

    def test_very_tall_original(self, storage, logger, work_dir):
        job = _store_original(storage, new_photo_id(), create_test_image(1, 2000, format="PNG"))

        result = asyncio.run(ImageProcessingJob(storage, logger, str(work_dir)).process(job))

        assert (result.width, result.height) == (1, 2000)
        assert result.derivatives == []
        assert result.blur_data_url.startswith("data:image/webp;base64,")


class _StubJob:
    """Succeeds unless the photo id is listed in ``failing``; can be made slow."""

    def __init__(self, failing=(), delay=0.0, exif_data=None):
        self.failing = set(failing)
        self.delay = delay
        self.exif_data = exif_data
        self.calls = []

    async def process(self, job):
        self.calls.append(job.photo_id)
        if self.delay:
            await asyncio.sleep(self.delay)
        if job.photo_id in self.failing:
            raise ImageProcessingError(f"Cannot decode image for {job.photo_id}")
        return ImageJobResult(
            photo_id=job.photo_id,
            derivatives=[f"processed/{job.photo_id}/300w.webp"],
            blur_data_url="data:image/webp;base64,UklGR",
            exif_data=self.exif_data,
            width=400,
            height=300,
        )


def _message(photo_id, attempt=1):
    return QueueMessage(
        message_id=f"msg-{photo_id}",
        job=ImageJobData(photo_id=photo_id, original_key=f"originals/{photo_id}/original.jpg"),
        attempt=attempt,
    )


def _processing_photo(photo_id):
    return Photo(id=photo_id, updated_at=utcnow() - timedelta(minutes=5))


def _reconciler(job, repository, logger, **kwargs):
    kwargs.setdefault("status_retry_delay", 0)
    return PhotoStatusReconciler(job, repository, logger, **kwargs)


class _SlowSuccessThenFailureJob:
    """First delivery succeeds slowly, the duplicate fails at once."""

    def __init__(self):
        self.calls = 0

    async def process(self, job):
        self.calls += 1
        if self.calls == 1:
            await asyncio.sleep(0.05)
            return ImageJobResult(
                photo_id=job.photo_id, blur_data_url="data:image/webp;base64,AA", width=400, height=300
            )
        raise ImageProcessingError("corrupt original")


class TestPhotoStatusReconciler:
    def test_transitions_follow_completion_order(self, logger):
        repository = InMemoryPhotoRepository([_processing_photo("p1")])
        reconciler = _reconciler(_SlowSuccessThenFailureJob(), repository, logger)
        first = _message("p1")
        duplicate = first.model_copy(update={"message_id": "msg-p1-dup", "attempt": 2})

        async def deliver_both():
            return await asyncio.gather(
                reconciler.process_message(first), reconciler.process_message(duplicate)
            )

        assert asyncio.run(deliver_both()) == [True, False]
        # The failure finished first, the slow success last
        assert repository.photos["p1"].status is PhotoStatus.READY

    def test_success_marks_photo_ready(self, logger):
        before = _processing_photo("p1")
        repository = InMemoryPhotoRepository([before])
        exif = ExifData(camera_make="Nikon")

        ok = asyncio.run(_reconciler(_StubJob(exif_data=exif), repository, logger).process_message(_message("p1")))

        photo = repository.photos["p1"]
        assert ok
        assert photo.status is PhotoStatus.READY
        assert photo.blur_data_url == "data:image/webp;base64,UklGR"
        assert photo.exif_data == exif
        assert (photo.width, photo.height) == (400, 300)
        assert photo.updated_at > before.updated_at

    def test_success_without_exif_stores_empty_marker(self, logger):
        repository = InMemoryPhotoRepository([_processing_photo("p1")])

        asyncio.run(_reconciler(_StubJob(), repository, logger).process_message(_message("p1")))

        photo = repository.photos["p1"]
        assert photo.exif_data is not None
        assert photo.exif_data.is_empty

    def test_success_is_idempotent(self, logger):
        repository = InMemoryPhotoRepository([_processing_photo("p1")])
        reconciler = _reconciler(_StubJob(), repository, logger)

        asyncio.run(reconciler.process_message(_message("p1")))
        first = repository.photos["p1"].model_dump(exclude={"updated_at"})
        asyncio.run(reconciler.process_message(_message("p1", attempt=2)))

        assert repository.photos["p1"].model_dump(exclude={"updated_at"}) == first

    def test_failure_marks_photo_error(self, logger):
        before = _processing_photo("p1")
        repository = InMemoryPhotoRepository([before])

        ok = asyncio.run(_reconciler(_StubJob(failing={"p1"}), repository, logger).process_message(_message("p1")))

        photo = repository.photos["p1"]
        assert not ok
        assert photo.status is PhotoStatus.ERROR
        assert photo.updated_at > before.updated_at
        assert photo.blur_data_url is None
        errors = logger.get_logs("ERROR")
        assert errors[0]["message"] == "Image job failed"
        assert "Cannot decode image" in errors[0]["error"]

    def test_timeout_is_a_failure(self, logger):
        repository = InMemoryPhotoRepository([_processing_photo("p1")])
        reconciler = _reconciler(_StubJob(delay=5), repository, logger, job_timeout_seconds=0.05)

        ok = asyncio.run(reconciler.process_message(_message("p1")))

        assert not ok
        assert repository.photos["p1"].status is PhotoStatus.ERROR
        assert "exceeded" in logger.get_logs("ERROR")[0]["error"]

    def test_error_write_is_retried(self, logger):
        repository = InMemoryPhotoRepository([_processing_photo("p1")])
        repository.fail_next_saves(2)

        asyncio.run(_reconciler(_StubJob(failing={"p1"}), repository, logger).process_message(_message("p1")))

        assert repository.photos["p1"].status is PhotoStatus.ERROR
        assert repository.save_count == 3

    def test_error_write_failure_is_not_raised(self, logger):
        repository = InMemoryPhotoRepository([_processing_photo("p1")])
        repository.fail_next_saves(3)

        ok = asyncio.run(_reconciler(_StubJob(failing={"p1"}), repository, logger).process_message(_message("p1")))

        assert not ok
        assert repository.photos["p1"].status is PhotoStatus.PROCESSING
        warning = logger.get_logs("WARNING")[0]
        assert warning["message"] == "Failed to mark photo as error"
        assert warning["photo_id"] == "p1"

    def test_missing_photo_is_logged(self, logger):
        repository = InMemoryPhotoRepository()

        ok = asyncio.run(_reconciler(_StubJob(), repository, logger).process_message(_message("gone")))

        assert ok
        assert "Photo not found: gone" in logger.messages("WARNING")
        assert repository.photos == {}

    def test_batch_reports_only_failed_messages(self, logger):
        repository = InMemoryPhotoRepository([_processing_photo(p) for p in ("p1", "p2", "p3")])
        reconciler = _reconciler(_StubJob(failing={"p2"}), repository, logger)

        failed = asyncio.run(
            reconciler.process_batch([_message("p1"), _message("p2"), _message("p3")], concurrency=2)
        )

        assert failed == {"msg-p2"}
        assert repository.photos["p1"].status is PhotoStatus.READY
        assert repository.photos["p2"].status is PhotoStatus.ERROR
        assert repository.photos["p3"].status is PhotoStatus.READY

    def test_batch_concurrency_is_bounded(self, logger):
        repository = InMemoryPhotoRepository([_processing_photo(f"p{i}") for i in range(4)])
        running = []
        peak = []

        class _CountingJob(_StubJob):
            async def process(self, job):
                running.append(job.photo_id)
                peak.append(len(running))
                await asyncio.sleep(0.01)
                running.remove(job.photo_id)
                return await super().process(job)

        reconciler = _reconciler(_CountingJob(), repository, logger)
        asyncio.run(reconciler.process_batch([_message(f"p{i}") for i in range(4)], concurrency=2))

        assert max(peak) == 2

    def test_records_metrics(self, logger):
        repository = InMemoryPhotoRepository([_processing_photo("p1"), _processing_photo("p2")])
        metrics = MetricsCollector()
        reconciler = _reconciler(_StubJob(failing={"p2"}), repository, logger, metrics_collector=metrics)

        asyncio.run(reconciler.process_batch([_message("p1"), _message("p2")]))

        summary = metrics.get_summary("image_job")
        assert summary["total_operations"] == 2
        assert summary["failed_operations"] == 1
