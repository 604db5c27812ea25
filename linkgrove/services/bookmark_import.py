from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from itertools import cycle

from bs4 import BeautifulSoup, Tag

from linkgrove.models import utcnow
from linkgrove.services.common import domain_from_url, is_valid_url, normalize_url
from linkgrove.services.tree import GROUP_COLORS, Group, Link, TreeStore, parse_timestamp

_HEADINGS = ["h3", "h2", "h1"]


@dataclass
class BookmarkEntry:
    title: str
    url: str
    folder_path: list[str]
    added: datetime | None = None


def _own_child(node: Tag, names, owner: Tag) -> Tag | None:
    for found in node.find_all(names):
        if isinstance(found, Tag) and found.find_parent("dt") is owner:
            return found
    return None


def _direct_entries(dl: Tag) -> list[Tag]:
    return [
        dt
        for dt in dl.find_all("dt")
        if isinstance(dt, Tag) and dt.find_parent("dl") is dl
    ]


def _folder_list(dt: Tag) -> Tag | None:
    nested = dt.find("dl")
    if isinstance(nested, Tag):
        return nested
    sibling = dt.next_sibling
    while sibling is not None:
        if isinstance(sibling, Tag):
            name = (sibling.name or "").lower()
            if name == "dl":
                return sibling
            if name == "dt":
                return None
        sibling = sibling.next_sibling
    return None


def _add_date(anchor: Tag) -> datetime | None:
    raw = anchor.get("add_date")
    if isinstance(raw, str) and raw.strip().isdigit():
        return parse_timestamp(int(raw.strip()) * 1000)
    return None


def _walk(dl: Tag, path: list[str], out: list[BookmarkEntry]) -> None:
    for dt in _direct_entries(dl):
        anchor = _own_child(dt, "a", dt)
        href = anchor.get("href") if anchor is not None else None
        if isinstance(href, str) and href.strip():
            out.append(
                BookmarkEntry(
                    title=anchor.get_text(strip=True),
                    url=href.strip(),
                    folder_path=list(path),
                    added=_add_date(anchor),
                )
            )

        heading = _own_child(dt, _HEADINGS, dt)
        nested = _folder_list(dt)
        # lxml nests unclosed <DT> tags, so a folder's heading can sit deeper
        if heading is None and nested is not None:
            found = dt.find(_HEADINGS)
            heading = found if isinstance(found, Tag) else None
        if heading is not None and nested is not None:
            _walk(nested, path + [heading.get_text(strip=True)], out)


def parse_bookmark_html(html: str) -> list[BookmarkEntry]:
    """Read a Netscape bookmark export into entries with their folder path."""
    soup = BeautifulSoup(html, "lxml")
    root = soup.find("dl")
    if not isinstance(root, Tag):
        return []
    entries: list[BookmarkEntry] = []
    _walk(root, [], entries)
    return entries


def build_records(
    entries: list[BookmarkEntry],
    store: TreeStore,
    now: datetime | None = None,
) -> tuple[list[Link], list[Group], int]:
    """Turn entries into new links and the groups their folder paths need.

    Folders reuse an existing group with the same name under the same parent.
    Entries whose URL is not a valid absolute http(s) URL are skipped.
    """
    created_at = now or utcnow()
    colors = cycle(GROUP_COLORS)
    known: dict[tuple[str | None, str], str] = {
        (group.parent_group_id, group.name): group.id for group in store.groups.values()
    }
    new_groups: list[Group] = []
    new_links: list[Link] = []
    skipped = 0

    def ensure_path(path: list[str]) -> str | None:
        parent_id = None
        for name in path:
            name = name.strip() or "Untitled"
            group_id = known.get((parent_id, name))
            if group_id is None:
                group = Group(
                    id=str(uuid.uuid4()),
                    name=name,
                    color=next(colors),
                    parent_group_id=parent_id,
                    created_at=created_at,
                )
                new_groups.append(group)
                known[(parent_id, name)] = group.id
                group_id = group.id
            parent_id = group_id
        return parent_id

    for entry in entries:
        url = normalize_url(entry.url)
        if not is_valid_url(url):
            skipped += 1
            continue
        new_links.append(
            Link(
                id=str(uuid.uuid4()),
                title=entry.title or domain_from_url(url) or url,
                url=url,
                group_id=ensure_path(entry.folder_path),
                created_at=entry.added or created_at,
            )
        )
    return new_links, new_groups, skipped


def import_bookmark_html(engine, html: str) -> dict:
    entries = parse_bookmark_html(html)
    links, groups, skipped = build_records(entries, engine.store)
    added = engine.append_records(links, groups)
    added["skipped"] = skipped
    return added
