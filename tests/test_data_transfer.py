from datetime import datetime, timezone

import pytest

from linkgrove.services.data_transfer import (
    export_filename,
    export_payload,
    import_payload,
    parse_import_payload,
)
from linkgrove.services.errors import ValidationError


def _build_tree(engine):
    work = engine.add_group({"name": "Work", "color": "#EF4444"})
    docs = engine.add_group({"name": "Docs"}, parent_group_id=work.id)
    engine.add_link({"title": "Tracker", "url": "tracker.example", "groupId": docs.id, "description": "bugs"})
    engine.add_link({"title": "News", "url": "https://news.example"})
    return work, docs


def test_export_then_import_reproduces_collections(engine, store, sync_manager):
    _build_tree(engine)
    before_links = dict(store.links)
    before_groups = dict(store.groups)
    exported = export_payload(store, now=datetime(2024, 6, 1, tzinfo=timezone.utc))

    engine.clear_all()
    sync_manager.tags.clear()
    result = import_payload(engine, exported)

    assert store.links == before_links
    assert store.groups == before_groups
    assert list(store.links) == list(before_links)
    assert result == {"links": 2, "groups": 2, "discarded_links": 0, "discarded_groups": 0}
    assert sorted(sync_manager.tags) == ["sync-groups", "sync-links"]


def test_export_shape():
    class _Store:
        links = {}
        groups = {}

    now = datetime(2024, 6, 1, 8, 30, tzinfo=timezone.utc)
    payload = export_payload(_Store(), now=now)

    assert payload == {
        "links": [],
        "groups": [],
        "exportDate": "2024-06-01T08:30:00+00:00",
        "version": "1.0",
    }
    assert export_filename(now) == "linkgrove-backup-2024-06-01.json"


def test_import_discards_records_missing_required_fields(engine, store):
    data = {
        "links": [
            {"id": "a", "title": "A", "url": "https://a.example", "createdAt": "2024-01-01T00:00:00Z"},
            {"id": "b", "url": "https://b.example", "createdAt": "2024-01-01T00:00:00Z"},
            {"id": "c", "title": "C", "url": "https://c.example"},
        ],
        "groups": [
            {"id": "g", "name": "G", "color": "#3B82F6", "createdAt": "2024-01-01T00:00:00Z"},
            {"id": "h", "name": "H", "createdAt": "2024-01-01T00:00:00Z"},
        ],
    }

    result = import_payload(engine, data)

    assert list(store.links) == ["a"]
    assert list(store.groups) == ["g"]
    assert result["discarded_links"] == 2
    assert result["discarded_groups"] == 1


def test_import_clears_references_to_discarded_groups(engine, store):
    data = {
        "links": [
            {"id": "a", "title": "A", "url": "https://a.example", "groupId": "h", "createdAt": "2024-01-01T00:00:00Z"},
        ],
        "groups": [
            {"id": "g", "name": "G", "color": "#3B82F6", "parentGroupId": "h", "createdAt": "2024-01-01T00:00:00Z"},
            {"id": "h", "name": "H", "createdAt": "2024-01-01T00:00:00Z"},
        ],
    }

    import_payload(engine, data)

    assert store.get_link("a").group_id is None
    assert store.get_group("g").parent_group_id is None


@pytest.mark.parametrize("data", [None, [], {"links": []}, {"links": {}, "groups": []}])
def test_import_rejects_malformed_files(engine, store, data):
    engine.add_link({"title": "Keep", "url": "https://keep.example"})

    with pytest.raises(ValidationError):
        parse_import_payload(data)
    with pytest.raises(ValidationError):
        import_payload(engine, data)

    assert len(store.links) == 1


def test_import_discards_records_with_out_of_range_timestamps(engine, store):
    data = {
        "links": [
            {"id": "a", "title": "A", "url": "https://a.example", "createdAt": 1e20},
            {"id": "b", "title": "B", "url": "https://b.example", "createdAt": 1714564800000},
        ],
        "groups": [],
    }

    result = import_payload(engine, data)

    assert list(store.links) == ["b"]
    assert result["discarded_links"] == 1
