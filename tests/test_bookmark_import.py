from linkgrove.services.bookmark_import import import_bookmark_html, parse_bookmark_html

NESTED_EXPORT = """
<!DOCTYPE NETSCAPE-Bookmark-file-1>
<DL><p>
  <DT><H3>Root Folder</H3>
  <DL><p>
    <DT><A HREF="https://example.com/a" ADD_DATE="1700000000">A</A>
    <DT><H3>Inner Folder</H3>
    <DL><p>
      <DT><A HREF="https://example.com/b">B</A>
      <DT><A HREF="javascript:void(0)">Bookmarklet</A>
    </DL><p>
  </DL><p>
  <DT><A HREF="https://example.com/root">Root Link</A>
</DL><p>
"""


def test_parse_bookmark_html_tracks_folder_paths():
    rows = parse_bookmark_html(NESTED_EXPORT)

    assert [row.url for row in rows] == [
        "https://example.com/a",
        "https://example.com/b",
        "javascript:void(0)",
        "https://example.com/root",
    ]
    assert rows[0].folder_path == ["Root Folder"]
    assert rows[0].added.year == 2023
    assert rows[1].folder_path == ["Root Folder", "Inner Folder"]
    assert rows[3].folder_path == []
    assert rows[3].added is None


def test_parse_bookmark_html_without_list_returns_nothing():
    assert parse_bookmark_html("<html><body>nothing</body></html>") == []


def test_import_bookmark_html_builds_nested_groups(engine, store, sync_manager):
    existing = engine.add_group({"name": "Root Folder"})
    sync_manager.tags.clear()

    result = import_bookmark_html(engine, NESTED_EXPORT)

    assert result == {"links": 3, "groups": 1, "skipped": 1}
    inner = store.subgroups(existing.id)
    assert [group.name for group in inner] == ["Inner Folder"]
    assert [link.url for link in store.links_of(existing.id)] == ["https://example.com/a"]
    assert [link.url for link in store.links_of(inner[0].id)] == ["https://example.com/b"]
    assert [link.title for link in store.ungrouped_links()] == ["Root Link"]
    assert sorted(sync_manager.tags) == ["sync-groups", "sync-links"]
