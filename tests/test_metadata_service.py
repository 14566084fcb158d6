from datetime import datetime, timezone

import pytest

from conftest import FakeEntityRepo, FakeImageRepo

from lodging_images.application.ports.entity_repo import ACCOMMODATION, ESTABLISHMENT, EntityRef
from lodging_images.application.ports.image_repo import ImageRecord, ThumbnailInfo
from lodging_images.application.services.metadata_service import ImageMetadataStore
from lodging_images.core.config import THUMBNAIL_SIZES
from lodging_images.exceptions import InvalidInputError, NotFoundError, VerificationFailedError

L1 = "data:image/png;base64,AAAA"
L2 = "data:image/jpeg;base64,BBBB"


def make_record(image_id="img1", establishment_id="est-1", uploaded_by="u1", **overrides) -> ImageRecord:
    fields = dict(
        id=image_id,
        establishment_id=establishment_id,
        original_filename="a.jpg",
        mime_type="image/jpeg",
        file_size=10,
        width=400,
        height=300,
        primary_url=f"/api/images/{image_id}.webp",
        fallback_url=f"/api/images/{image_id}.jpg",
        thumbnails={
            name: ThumbnailInfo(path=f"/t/{name}", url=f"/api/images/{image_id}/thumbnail/{name}",
                                width=w, height=h, file_size=5)
            for name, (w, h) in THUMBNAIL_SIZES.items()
        },
        uploaded_by=uploaded_by,
        created_at=datetime(2024, 3, 15, tzinfo=timezone.utc),
    )
    fields.update(overrides)
    return ImageRecord(**fields)


def _store(*entities):
    entity_repo = FakeEntityRepo(list(entities))
    return ImageMetadataStore(images=FakeImageRepo(), entities=entity_repo), entity_repo


def test_create_and_lookups():
    store, _ = _store()
    store.create(make_record("img1"))
    store.create(make_record("img2", establishment_id="est-2", uploaded_by="u2"))

    assert store.find_by_id("img1.webp").id == "img1"
    assert store.find_by_id("img1").id == "img1"
    assert store.find_by_url("/api/images/img1.jpg").id == "img1"
    assert store.find_by_url("/api/images/img1/thumbnail/small").id == "img1"
    assert store.find_by_url("https://elsewhere/img1.webp") is None
    assert [r.id for r in store.find_by_establishment("est-2")] == ["img2"]
    assert [r.id for r in store.find_by_uploader("u1")] == ["img1"]


@pytest.mark.parametrize("overrides", [
    {"establishment_id": ""},
    {"original_filename": ""},
    {"width": 0},
    {"thumbnails": {}},
])
def test_create_refuses_incomplete_records(overrides):
    store, _ = _store()
    with pytest.raises(InvalidInputError):
        store.create(make_record(**overrides))


def test_create_refuses_empty_thumbnail():
    record = make_record()
    record.thumbnails["small"].file_size = 0
    with pytest.raises(InvalidInputError):
        _store()[0].create(record)


def test_update_and_delete():
    store, _ = _store()
    store.create(make_record())
    assert store.update("img1.webp", original_filename="b.jpg").original_filename == "b.jpg"
    with pytest.raises(NotFoundError):
        store.update("nope", original_filename="x")
    with pytest.raises(InvalidInputError):
        store.update("img1", id="other")
    assert store.delete_by_url("/api/images/img1.webp") is True
    assert store.delete("img1") is False


def test_add_reference_appends_or_inserts():
    store, repo = _store(EntityRef(ESTABLISHMENT, "e1", "e1", ["a"]))
    assert store.add_reference(ESTABLISHMENT, "e1", "b") == ["a", "b"]
    assert store.add_reference(ESTABLISHMENT, "e1", "first", position=0) == ["first", "a", "b"]
    with pytest.raises(NotFoundError):
        store.add_reference(ESTABLISHMENT, "missing", "x")


def test_remove_image_references_matches_any_rendition():
    record = make_record("img1")
    store, _ = _store(EntityRef(
        ACCOMMODATION, "a1", "est-1",
        ["/api/images/img1.webp", "/api/images/other.webp", "/api/images/img1.jpg"],
    ))
    assert store.remove_image_references(ACCOMMODATION, "a1", record) == ["/api/images/other.webp"]


def test_reorder_requires_same_multiset():
    store, _ = _store(EntityRef(ESTABLISHMENT, "e1", "e1", ["a", "b", "c"]))
    assert store.reorder_references(ESTABLISHMENT, "e1", ["c", "a", "b"]) == ["c", "a", "b"]
    with pytest.raises(InvalidInputError):
        store.reorder_references(ESTABLISHMENT, "e1", ["c", "a"])
    with pytest.raises(InvalidInputError):
        store.reorder_references(ESTABLISHMENT, "e1", ["c", "a", "x"])


def test_replace_round_trip_preserves_other_entries():
    others = ["/api/images/a.webp", "/api/images/b.webp", "/api/images/c.webp"]
    store, _ = _store(EntityRef(ESTABLISHMENT, "e1", "e1", [others[0], L1, others[1], others[2]]))

    result = store.replace_legacy_in_entity(ESTABLISHMENT, "e1", L1, "/api/images/x.webp")

    images = store.entities.get_images(ESTABLISHMENT, "e1")
    assert result.replaced_count == 1
    assert len(images) == len(others) + 1
    assert images.count("/api/images/x.webp") == 1
    assert L1 not in images
    assert [i for i in images if i != "/api/images/x.webp"] == others


def test_replace_only_targeted_entry():
    store, _ = _store(EntityRef(ESTABLISHMENT, "e1", "e1", [L1, "/api/images/a.webp", L2]))
    store.replace_legacy_in_entity(ESTABLISHMENT, "e1", L1, "/api/images/x.webp")
    assert store.entities.get_images(ESTABLISHMENT, "e1") == ["/api/images/x.webp", "/api/images/a.webp", L2]


def test_replace_every_occurrence_of_duplicate_payload():
    store, _ = _store(EntityRef(ESTABLISHMENT, "e1", "e1", [L1, "/api/images/a.webp", L1]))
    result = store.replace_legacy_in_entity(ESTABLISHMENT, "e1", L1, "/api/images/x.webp")
    assert result.replaced_count == 2
    assert result.images == ["/api/images/x.webp", "/api/images/a.webp", "/api/images/x.webp"]


def test_replace_missing_payload_is_not_found():
    store, repo = _store(EntityRef(ESTABLISHMENT, "e1", "e1", [L2]))
    with pytest.raises(NotFoundError):
        store.replace_legacy_in_entity(ESTABLISHMENT, "e1", L1, "/api/images/x.webp")
    assert repo.get_images(ESTABLISHMENT, "e1") == [L2]


def test_replace_that_does_not_read_back_fails_verification():
    class ForgetfulRepo(FakeEntityRepo):
        def get_images(self, entity_type, entity_id):
            return [L1]

    repo = ForgetfulRepo([EntityRef(ESTABLISHMENT, "e1", "e1", [L1])])
    store = ImageMetadataStore(images=FakeImageRepo(), entities=repo)
    with pytest.raises(VerificationFailedError):
        store.replace_legacy_in_entity(ESTABLISHMENT, "e1", L1, "/api/images/x.webp")


def test_replace_that_writes_fewer_new_references_fails_verification():
    class TruncatingRepo(FakeEntityRepo):
        def update_images(self, entity_type, entity_id, mutate):
            return super().update_images(entity_type, entity_id, lambda imgs: mutate(imgs)[:1])

    repo = TruncatingRepo([EntityRef(ESTABLISHMENT, "e1", "e1", [L1, "/api/images/a.webp", L1])])
    store = ImageMetadataStore(images=FakeImageRepo(), entities=repo)
    with pytest.raises(VerificationFailedError) as exc:
        store.replace_legacy_in_entity(ESTABLISHMENT, "e1", L1, "/api/images/x.webp")
    assert "Replaced 1 of 2" in str(exc.value)


def test_migration_verification():
    store, _ = _store(
        EntityRef(ESTABLISHMENT, "e1", "e1", [L1, "/api/images/a.webp"]),
        EntityRef(ACCOMMODATION, "a1", "e1", ["/api/images/b.webp"]),
        EntityRef(ACCOMMODATION, "a2", "e1", [L1, L2]),
    )
    entity = store.verify_entity_migration(ESTABLISHMENT, "e1")
    assert entity.is_complete is False
    assert entity.legacy_count == 1
    assert store.verify_entity_migration(ACCOMMODATION, "a1").is_complete is True
    with pytest.raises(NotFoundError):
        store.verify_entity_migration(ACCOMMODATION, "zzz")

    overall = store.verify_overall_migration()
    assert overall.is_complete is False
    assert overall.total_entities == 3
    assert overall.remaining_legacy_images == 3
    assert [(s.entity_type, s.entity_id) for s in overall.remaining_entities] == [
        (ESTABLISHMENT, "e1"), (ACCOMMODATION, "a2"),
    ]


def test_check_usage():
    store, _ = _store(
        EntityRef(ESTABLISHMENT, "e1", "e1", ["/api/images/img1.jpg"]),
        EntityRef(ACCOMMODATION, "a1", "e1", ["/api/images/other.webp"]),
    )
    store.create(make_record("img1"))
    usage = store.check_usage("/api/images/img1.webp")
    assert usage.is_used is True
    assert usage.image_id == "img1"
    assert [(e.entity_type, e.entity_id) for e in usage.entities] == [(ESTABLISHMENT, "e1")]
    assert store.check_usage("/api/images/unused.webp").is_used is False
