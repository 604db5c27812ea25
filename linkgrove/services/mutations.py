from __future__ import annotations

import logging
import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

from linkgrove.models import utcnow
from linkgrove.services.common import (
    domain_from_url,
    extract_url_from_text,
    format_url,
    is_valid_url,
    normalize_url,
)
from linkgrove.services.errors import NotFoundError, PersistenceError, ValidationError
from linkgrove.services.sync import SYNC_TOPIC_GROUPS, SYNC_TOPIC_LINKS
from linkgrove.services.tree import (
    DEFAULT_GROUP_COLOR,
    GROUP_COLORS,
    Group,
    Link,
    TreeStore,
)

logger = logging.getLogger(__name__)

LINK_FIELDS = {"title", "url", "description", "groupId"}
GROUP_FIELDS = {"name", "color", "parentGroupId"}

DROP_TYPE_LINK = "link"
DROP_TYPE_GROUP = "group"
DROP_TYPE_URL = "url"


@dataclass
class GroupDeletion:
    group_ids: set[str] = field(default_factory=set)
    ungrouped_link_ids: list[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "deleted_group_ids": sorted(self.group_ids),
            "ungrouped_link_ids": self.ungrouped_link_ids,
        }


def _new_id() -> str:
    return str(uuid.uuid4())


def _clean_title(value) -> str:
    title = value.strip() if isinstance(value, str) else ""
    if not title:
        raise ValidationError("title is required", field="title")
    return title


def _clean_url(value) -> str:
    raw = value.strip() if isinstance(value, str) else ""
    if not raw:
        raise ValidationError("url is required", field="url")
    url = normalize_url(raw)
    if not is_valid_url(url):
        raise ValidationError("url is not a valid absolute URL", field="url")
    return url


def _clean_description(value) -> str | None:
    text = value.strip() if isinstance(value, str) else ""
    return text or None


def _clean_name(value) -> str:
    name = value.strip() if isinstance(value, str) else ""
    if not name:
        raise ValidationError("name is required", field="name")
    return name


def _clean_color(value) -> str:
    if value is None or value == "":
        return DEFAULT_GROUP_COLOR
    color = str(value).strip().upper()
    if color not in GROUP_COLORS:
        raise ValidationError("color must be one of the palette colors", field="color")
    return color


def _optional_ref(value) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


class MutationEngine:
    """Validated add/edit/delete/move over a ``TreeStore``.

    Each successful call flushes the store through its adapter before it
    returns and then asks the sync orchestrator to register the affected
    topics. Calls are serialized; a failed call leaves memory untouched.
    """

    def __init__(
        self,
        store: TreeStore,
        orchestrator=None,
        id_factory: Callable[[], str] = _new_id,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.orchestrator = orchestrator
        self._id_factory = id_factory
        self._clock = clock
        self._lock = threading.RLock()

    @contextmanager
    def _mutation(self, *topics: str):
        with self._lock:
            snapshot = self.store.snapshot()
            try:
                yield
            except Exception:
                self.store.restore(snapshot)
                raise
            try:
                self.store.flush()
            except Exception as exc:
                self.store.restore(snapshot)
                logger.error("Persisting tree failed, change rolled back: %s", exc)
                self._reflush()
                raise PersistenceError(str(exc) or exc.__class__.__name__) from exc
        self._request_sync(topics)

    def _reflush(self) -> None:
        # Adapters without transactions may hold some keys of the failed write.
        try:
            self.store.flush()
        except Exception as exc:
            logger.error("Restoring persisted tree failed: %s", exc)

    def _request_sync(self, topics) -> None:
        if self.orchestrator is None:
            return
        for topic in dict.fromkeys(topics):
            self.orchestrator.request_sync(topic)

    def _require_link(self, link_id: str) -> Link:
        link = self.store.get_link(link_id)
        if link is None:
            logger.warning("Link %s not found", link_id)
            raise NotFoundError("link", link_id)
        return link

    def _require_group(self, group_id: str) -> Group:
        group = self.store.get_group(group_id)
        if group is None:
            logger.warning("Group %s not found", group_id)
            raise NotFoundError("group", group_id)
        return group

    def _can_reparent(self, group_id: str, target_group_id: str | None) -> bool:
        if target_group_id is None:
            return True
        if target_group_id == group_id:
            return False
        return target_group_id not in self.store.descendant_ids(group_id)

    def reload(self) -> None:
        with self._lock:
            self.store.reload()

    def add_link(self, data: dict) -> Link:
        with self._mutation(SYNC_TOPIC_LINKS):
            group_id = _optional_ref(data.get("groupId"))
            if group_id is not None:
                self._require_group(group_id)
            link = Link(
                id=self._id_factory(),
                title=_clean_title(data.get("title")),
                url=_clean_url(data.get("url")),
                description=_clean_description(data.get("description")),
                group_id=group_id,
                created_at=self._clock(),
            )
            self.store.links[link.id] = link
        return link

    def edit_link(self, link_id: str, data: dict) -> Link:
        with self._mutation(SYNC_TOPIC_LINKS):
            link = self._require_link(link_id)
            if "title" in data:
                link.title = _clean_title(data.get("title"))
            if "url" in data:
                link.url = _clean_url(data.get("url"))
            if "description" in data:
                link.description = _clean_description(data.get("description"))
            if "groupId" in data:
                group_id = _optional_ref(data.get("groupId"))
                if group_id is not None:
                    self._require_group(group_id)
                link.group_id = group_id
        return link

    def delete_link(self, link_id: str) -> bool:
        with self._lock:
            if link_id not in self.store.links:
                return False
            with self._mutation(SYNC_TOPIC_LINKS):
                del self.store.links[link_id]
        return True

    def move_link(self, link_id: str, target_group_id: str | None = None) -> Link:
        with self._mutation(SYNC_TOPIC_LINKS):
            link = self._require_link(link_id)
            target_group_id = _optional_ref(target_group_id)
            if target_group_id is not None:
                self._require_group(target_group_id)
            link.group_id = target_group_id
        return link

    def add_group(self, data: dict, parent_group_id: str | None = None) -> Group:
        with self._mutation(SYNC_TOPIC_GROUPS):
            parent_group_id = _optional_ref(
                parent_group_id
                if parent_group_id is not None
                else data.get("parentGroupId")
            )
            if parent_group_id is not None:
                self._require_group(parent_group_id)
            group = Group(
                id=self._id_factory(),
                name=_clean_name(data.get("name")),
                color=_clean_color(data.get("color")),
                parent_group_id=parent_group_id,
                created_at=self._clock(),
            )
            self.store.groups[group.id] = group
        return group

    def edit_group(self, group_id: str, data: dict) -> Group:
        with self._mutation(SYNC_TOPIC_GROUPS):
            group = self._require_group(group_id)
            if "name" in data:
                group.name = _clean_name(data.get("name"))
            if "color" in data:
                group.color = _clean_color(data.get("color"))
            if "parentGroupId" in data:
                parent_id = _optional_ref(data.get("parentGroupId"))
                if parent_id != group.parent_group_id:
                    if parent_id is not None:
                        self._require_group(parent_id)
                    if not self._can_reparent(group_id, parent_id):
                        raise ValidationError(
                            "a group cannot be placed inside itself or its subgroups",
                            field="parentGroupId",
                        )
                    group.parent_group_id = parent_id
        return group

    def delete_group(self, group_id: str) -> GroupDeletion:
        result = GroupDeletion()
        with self._mutation(SYNC_TOPIC_GROUPS, SYNC_TOPIC_LINKS):
            self._require_group(group_id)
            result.group_ids = self.store.descendant_ids(group_id)
            for link in self.store.links.values():
                if link.group_id in result.group_ids:
                    link.group_id = None
                    result.ungrouped_link_ids.append(link.id)
            for removed_id in result.group_ids:
                del self.store.groups[removed_id]
        return result

    def move_group(self, group_id: str, target_group_id: str | None = None) -> bool:
        target_group_id = _optional_ref(target_group_id)
        with self._lock:
            group = self.store.get_group(group_id)
            if group is None:
                logger.info("Ignoring move of unknown group %s", group_id)
                return False
            if target_group_id is not None and target_group_id not in self.store.groups:
                logger.info("Ignoring move of group %s to unknown group %s", group_id, target_group_id)
                return False
            if not self._can_reparent(group_id, target_group_id):
                logger.info(
                    "Rejected move of group %s into %s: would create a cycle",
                    group_id,
                    target_group_id,
                )
                return False
            with self._mutation(SYNC_TOPIC_GROUPS):
                group.parent_group_id = target_group_id
        return True

    def add_dropped_url(self, text: str, target_group_id: str | None = None) -> Link | None:
        extracted = extract_url_from_text(text or "")
        if not extracted:
            return None
        url = format_url(extracted)
        if not is_valid_url(normalize_url(url)):
            return None
        return self.add_link(
            {"title": domain_from_url(url) or url, "url": url, "groupId": target_group_id}
        )

    def apply_drop(self, item: dict, target_group_id: str | None = None) -> dict:
        """Apply a drag-and-drop payload ``{type, id?, url?}`` onto a target group."""
        kind = (item or {}).get("type")
        item_id = (item or {}).get("id")
        if kind == DROP_TYPE_LINK and item_id:
            link = self.move_link(item_id, target_group_id)
            return {"action": "move_link", "applied": True, "link": link.as_dict()}
        if kind == DROP_TYPE_GROUP and item_id:
            moved = self.move_group(item_id, target_group_id)
            return {"action": "move_group", "applied": moved}
        if kind == DROP_TYPE_URL and isinstance(item.get("url"), str) and item["url"]:
            link = self.add_dropped_url(item["url"], target_group_id)
            return {
                "action": "add_link",
                "applied": link is not None,
                "link": link.as_dict() if link else None,
            }
        return {"action": None, "applied": False}

    def replace_all(self, links: list[Link], groups: list[Group]) -> None:
        with self._mutation(SYNC_TOPIC_LINKS, SYNC_TOPIC_GROUPS):
            self.store.replace(links, groups)

    def append_records(self, links: list[Link], groups: list[Group]) -> dict:
        with self._mutation(SYNC_TOPIC_LINKS, SYNC_TOPIC_GROUPS):
            added_groups = 0
            added_links = 0
            for group in groups:
                if group.id not in self.store.groups:
                    self.store.groups[group.id] = group
                    added_groups += 1
            for link in links:
                if link.id not in self.store.links:
                    self.store.links[link.id] = link
                    added_links += 1
            self.store.repair()
        return {"links": added_links, "groups": added_groups}

    def clear_all(self) -> None:
        with self._mutation(SYNC_TOPIC_LINKS, SYNC_TOPIC_GROUPS):
            self.store.links = {}
            self.store.groups = {}
