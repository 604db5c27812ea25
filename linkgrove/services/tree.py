from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone

from dateutil import parser as dt_parser

from linkgrove.services.persistence import KeyValueStore

logger = logging.getLogger(__name__)

LINKS_KEY = "linktree-links"
GROUPS_KEY = "linktree-groups"

GROUP_COLORS = [
    "#3B82F6",
    "#10B981",
    "#F59E0B",
    "#EF4444",
    "#8B5CF6",
    "#06B6D4",
    "#F97316",
    "#84CC16",
    "#EC4899",
    "#6B7280",
]
DEFAULT_GROUP_COLOR = GROUP_COLORS[0]


def parse_timestamp(value) -> datetime | None:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            parsed = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    elif isinstance(value, str) and value.strip():
        try:
            parsed = dt_parser.isoparse(value.strip())
        except (ValueError, OverflowError):
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _text(value) -> str:
    return value.strip() if isinstance(value, str) else ""


def _optional_id(value) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


@dataclass
class Link:
    id: str
    title: str
    url: str
    created_at: datetime
    description: str | None = None
    group_id: str | None = None

    def as_dict(self) -> dict:
        payload = {
            "id": self.id,
            "title": self.title,
            "url": self.url,
            "createdAt": self.created_at.isoformat(),
        }
        if self.description:
            payload["description"] = self.description
        if self.group_id:
            payload["groupId"] = self.group_id
        return payload

    @classmethod
    def from_dict(cls, data) -> Link | None:
        """Build a link from a stored/imported record, or ``None`` if incomplete."""
        if not isinstance(data, dict):
            return None
        link_id = _optional_id(data.get("id"))
        title = _text(data.get("title"))
        url = _text(data.get("url"))
        created_at = parse_timestamp(data.get("createdAt"))
        if not link_id or not title or not url or created_at is None:
            return None
        return cls(
            id=link_id,
            title=title,
            url=url,
            created_at=created_at,
            description=_text(data.get("description")) or None,
            group_id=_optional_id(data.get("groupId")),
        )


@dataclass
class Group:
    id: str
    name: str
    color: str
    created_at: datetime
    parent_group_id: str | None = None

    def as_dict(self) -> dict:
        payload = {
            "id": self.id,
            "name": self.name,
            "color": self.color,
            "createdAt": self.created_at.isoformat(),
        }
        if self.parent_group_id:
            payload["parentGroupId"] = self.parent_group_id
        return payload

    @classmethod
    def from_dict(cls, data) -> Group | None:
        if not isinstance(data, dict):
            return None
        group_id = _optional_id(data.get("id"))
        name = _text(data.get("name"))
        color = _text(data.get("color"))
        created_at = parse_timestamp(data.get("createdAt"))
        if not group_id or not name or not color or created_at is None:
            return None
        return cls(
            id=group_id,
            name=name,
            color=color,
            created_at=created_at,
            parent_group_id=_optional_id(data.get("parentGroupId")),
        )


def parse_records(raw_links, raw_groups) -> tuple[list[Link], list[Group]]:
    links = [link for link in map(Link.from_dict, raw_links or []) if link]
    groups = [group for group in map(Group.from_dict, raw_groups or []) if group]
    return links, groups


class TreeStore:
    """Id-indexed link and group collections with derived tree views.

    The views never cache anything: each call walks the current collections.
    Mutation goes through ``MutationEngine``; the store itself only knows how
    to load, flush and snapshot its state.
    """

    def __init__(
        self,
        adapter: KeyValueStore,
        links_key: str = LINKS_KEY,
        groups_key: str = GROUPS_KEY,
    ):
        self.adapter = adapter
        self.links_key = links_key
        self.groups_key = groups_key
        self.links: dict[str, Link] = {}
        self.groups: dict[str, Group] = {}

    @classmethod
    def load(
        cls,
        adapter: KeyValueStore,
        links_key: str = LINKS_KEY,
        groups_key: str = GROUPS_KEY,
    ) -> TreeStore:
        store = cls(adapter, links_key=links_key, groups_key=groups_key)
        store.reload()
        return store

    def reload(self) -> None:
        raw_links = self.adapter.read(self.links_key)
        raw_groups = self.adapter.read(self.groups_key)
        links, groups = parse_records(
            raw_links if isinstance(raw_links, list) else [],
            raw_groups if isinstance(raw_groups, list) else [],
        )
        self.replace(links, groups)

    def replace(self, links: list[Link], groups: list[Group]) -> None:
        self.links = {}
        self.groups = {}
        for group in groups:
            self.groups.setdefault(group.id, group)
        for link in links:
            self.links.setdefault(link.id, link)
        self.repair()

    def repair(self) -> int:
        """Clear dangling references and break parent cycles. Returns fix count."""
        fixes = 0
        for group in self.groups.values():
            if group.parent_group_id and group.parent_group_id not in self.groups:
                logger.warning(
                    "Group %s referenced missing parent %s; moved to top level",
                    group.id,
                    group.parent_group_id,
                )
                group.parent_group_id = None
                fixes += 1

        for group in self.groups.values():
            seen = {group.id}
            parent_id = group.parent_group_id
            while parent_id:
                if parent_id == group.id:
                    logger.warning(
                        "Group %s was its own ancestor; moved to top level", group.id
                    )
                    group.parent_group_id = None
                    fixes += 1
                    break
                if parent_id in seen:
                    break
                seen.add(parent_id)
                parent_id = self.groups[parent_id].parent_group_id

        for link in self.links.values():
            if link.group_id and link.group_id not in self.groups:
                logger.warning(
                    "Link %s referenced missing group %s; ungrouped",
                    link.id,
                    link.group_id,
                )
                link.group_id = None
                fixes += 1
        return fixes

    def flush(self) -> None:
        self.adapter.write_many(
            {
                self.links_key: [link.as_dict() for link in self.links.values()],
                self.groups_key: [group.as_dict() for group in self.groups.values()],
            }
        )

    def snapshot(self) -> tuple[dict[str, Link], dict[str, Group]]:
        return (
            {key: replace(link) for key, link in self.links.items()},
            {key: replace(group) for key, group in self.groups.items()},
        )

    def restore(self, snapshot: tuple[dict[str, Link], dict[str, Group]]) -> None:
        links, groups = snapshot
        self.links = dict(links)
        self.groups = dict(groups)

    def get_link(self, link_id: str | None) -> Link | None:
        if link_id is None:
            return None
        return self.links.get(link_id)

    def get_group(self, group_id: str | None) -> Group | None:
        if group_id is None:
            return None
        return self.groups.get(group_id)

    def top_level_groups(self) -> list[Group]:
        return [group for group in self.groups.values() if not group.parent_group_id]

    def subgroups(self, group_id: str) -> list[Group]:
        return [
            group for group in self.groups.values() if group.parent_group_id == group_id
        ]

    def ungrouped_links(self) -> list[Link]:
        return [link for link in self.links.values() if not link.group_id]

    def links_of(self, group_id: str) -> list[Link]:
        return [link for link in self.links.values() if link.group_id == group_id]

    def descendant_ids(self, group_id: str) -> set[str]:
        children_by_parent: dict[str, list[str]] = {}
        for group in self.groups.values():
            if group.parent_group_id:
                children_by_parent.setdefault(group.parent_group_id, []).append(
                    group.id
                )

        found = {group_id}
        pending = [group_id]
        while pending:
            current = pending.pop()
            for child_id in children_by_parent.get(current, []):
                if child_id not in found:
                    found.add(child_id)
                    pending.append(child_id)
        return found

    def group_path(self, group_id: str) -> str:
        names: list[str] = []
        seen: set[str] = set()
        group = self.groups.get(group_id)
        while group and group.id not in seen:
            seen.add(group.id)
            names.append(group.name)
            group = self.groups.get(group.parent_group_id) if group.parent_group_id else None
        return " > ".join(reversed(names))

    def parent_choices(self, group_id: str | None = None) -> list[dict]:
        excluded = self.descendant_ids(group_id) if group_id else set()
        choices = [
            {"id": group.id, "name": group.name, "path": self.group_path(group.id)}
            for group in self.groups.values()
            if group.id not in excluded
        ]
        choices.sort(key=lambda item: item["path"].lower())
        return choices

    def _group_node(self, group: Group, seen: set[str]) -> dict:
        seen.add(group.id)
        payload = group.as_dict()
        payload["path"] = self.group_path(group.id)
        payload["links"] = [link.as_dict() for link in self.links_of(group.id)]
        payload["subgroups"] = [
            self._group_node(child, seen)
            for child in self.subgroups(group.id)
            if child.id not in seen
        ]
        return payload

    def tree(self) -> dict:
        seen: set[str] = set()
        return {
            "groups": [self._group_node(group, seen) for group in self.top_level_groups()],
            "ungrouped": [link.as_dict() for link in self.ungrouped_links()],
            "counts": {"links": len(self.links), "groups": len(self.groups)},
        }
