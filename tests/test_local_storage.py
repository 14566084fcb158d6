import os
import stat

import pytest

from conftest import FIXED_NOW

from lodging_images.application.ports.image_repo import ImageRecord, ProcessedImage
from lodging_images.core.config import THUMBNAIL_SIZES
from lodging_images.core.layout import image_paths
from lodging_images.exceptions import StorageFailedError
from lodging_images.infrastructure.storage.local_storage import LocalFileStore


def _processed(base_dir, image_id="img1", primary_ext="webp"):
    paths = image_paths(base_dir, "est-1", FIXED_NOW, image_id, primary_ext=primary_ext)
    record = ImageRecord(
        id=image_id,
        establishment_id="est-1",
        original_filename="a.jpg",
        mime_type="image/jpeg",
        file_size=3,
        width=400,
        height=300,
        primary_url=f"/api/images/{image_id}.{primary_ext}",
        fallback_url=f"/api/images/{image_id}.jpg",
        thumbnails={},
        uploaded_by="u",
        created_at=FIXED_NOW,
    )
    return ProcessedImage(
        record=record,
        primary=b"primary",
        fallback=b"fallback",
        original=b"original",
        thumbnails={name: f"t-{name}".encode() for name in THUMBNAIL_SIZES},
        fallback_thumbnails={name: f"j-{name}".encode() for name in THUMBNAIL_SIZES},
        paths=paths,
    )


def _all_files(root):
    return sorted(os.path.join(d, f) for d, _, files in os.walk(root) for f in files)


def test_create_establishment_directories(tmp_path):
    store = LocalFileStore(base_dir=str(tmp_path), dir_mode=0o750)
    layout = store.create_establishment_directories("est-1", FIXED_NOW)
    for path in layout.all_directories():
        assert os.path.isdir(path)
    assert stat.S_IMODE(os.stat(layout.primary).st_mode) == 0o750
    # second call is harmless
    store.create_establishment_directories("est-1", FIXED_NOW)


def test_store_image_files_writes_every_rendition(tmp_path):
    store = LocalFileStore(base_dir=str(tmp_path), file_mode=0o640, preserve_originals=False)
    processed = _processed(str(tmp_path))
    written = store.store_image_files(processed)

    assert len(written) == 2 + 8
    assert sorted(written) == _all_files(str(tmp_path))
    assert store.read_file(processed.paths.primary) == b"primary"
    assert store.read_file(processed.paths.fallback_thumbnails["small"]) == b"j-small"
    assert stat.S_IMODE(os.stat(processed.paths.fallback).st_mode) == 0o640
    assert not store.file_exists(processed.paths.original)


def test_store_image_files_with_original(tmp_path):
    store = LocalFileStore(base_dir=str(tmp_path), preserve_originals=True)
    processed = _processed(str(tmp_path))
    written = store.store_image_files(processed)
    assert processed.paths.original in written
    assert store.read_file(processed.paths.original) == b"original"


def test_jpeg_served_thumbnails_share_paths(tmp_path):
    store = LocalFileStore(base_dir=str(tmp_path))
    processed = _processed(str(tmp_path), primary_ext="jpg")
    written = store.store_thumbnails(processed)
    assert len(written) == 4
    assert store.read_file(processed.paths.thumbnails["medium"]) == b"t-medium"


def test_failed_write_rolls_back_siblings(tmp_path, monkeypatch):
    store = LocalFileStore(base_dir=str(tmp_path))
    processed = _processed(str(tmp_path))
    real_write = store._write

    def flaky_write(path, data):
        if "xlarge" in path:
            raise OSError("disk full")
        return real_write(path, data)

    monkeypatch.setattr(store, "_write", flaky_write)
    with pytest.raises(StorageFailedError):
        store.store_image_files(processed)
    assert _all_files(str(tmp_path)) == []


def test_file_created_before_failure_is_rolled_back(tmp_path, monkeypatch):
    store = LocalFileStore(base_dir=str(tmp_path))
    processed = _processed(str(tmp_path))
    real_chmod = os.chmod

    def chmod_out_of_space(path, mode, *args, **kwargs):
        if path == processed.paths.fallback:
            raise OSError(28, "No space left on device")
        return real_chmod(path, mode, *args, **kwargs)

    monkeypatch.setattr(os, "chmod", chmod_out_of_space)
    with pytest.raises(StorageFailedError):
        store.store_image_files(processed)
    assert _all_files(str(tmp_path)) == []


def test_rollback_skips_missing_and_never_raises(tmp_path):
    store = LocalFileStore(base_dir=str(tmp_path))
    existing = tmp_path / "a.txt"
    existing.write_bytes(b"x")
    deleted = store.rollback_file_operations([str(existing), str(tmp_path / "missing.txt")])
    assert deleted == [str(existing)]
    assert not existing.exists()


@pytest.mark.parametrize("preserve", [True, False])
def test_complete_cleanup_removes_exactly_the_written_files(tmp_path, preserve):
    store = LocalFileStore(base_dir=str(tmp_path), preserve_originals=preserve)
    processed = _processed(str(tmp_path))
    written = store.store_image_files(processed)
    neighbour = store.store_image_files(_processed(str(tmp_path), image_id="img2"))

    result = store.complete_cleanup("img1", "est-1", FIXED_NOW)

    assert result.success is True
    assert sorted(result.deleted_files) == sorted(written)
    assert _all_files(str(tmp_path)) == sorted(neighbour)


def test_complete_cleanup_of_partial_set(tmp_path):
    store = LocalFileStore(base_dir=str(tmp_path))
    processed = _processed(str(tmp_path))
    written = store.store_primary(processed) + store.store_fallback(processed)
    result = store.complete_cleanup("img1", "est-1", FIXED_NOW)
    assert sorted(result.deleted_files) == sorted(written)
    assert result.errors == []


def test_complete_cleanup_rejects_bad_establishment(tmp_path):
    result = LocalFileStore(base_dir=str(tmp_path)).complete_cleanup("img1", "../x", FIXED_NOW)
    assert result.success is False


def test_find_orphaned_files_classifies_paths(tmp_path):
    store = LocalFileStore(base_dir=str(tmp_path))
    processed = _processed(str(tmp_path))
    store.store_image_files(processed)
    stray = tmp_path / "est-1" / "notes.txt"
    stray.write_text("x")

    found = {f.path: f for f in store.find_orphaned_files("est-1")}
    assert found[processed.paths.primary].kind == "primary"
    assert found[processed.paths.primary].image_id == "img1"
    assert found[processed.paths.thumbnails["large"]].kind == "thumbnails/large"
    assert found[processed.paths.thumbnails["large"]].image_id == "img1"
    assert found[str(stray)].kind == "unknown"
    assert found[str(stray)].image_id is None


def test_cleanup_empty_directories(tmp_path):
    store = LocalFileStore(base_dir=str(tmp_path))
    store.create_establishment_directories("est-1", FIXED_NOW)
    removed = store.cleanup_empty_directories("est-1")
    # 7 leaf dirs, thumbnails/, MM/, YYYY/
    assert removed == 10
    assert os.path.isdir(tmp_path / "est-1")
