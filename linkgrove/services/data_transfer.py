from __future__ import annotations

from datetime import datetime

from linkgrove.models import utcnow
from linkgrove.services.errors import ValidationError
from linkgrove.services.tree import Group, Link, TreeStore, parse_records

EXPORT_VERSION = "1.0"


def export_payload(store: TreeStore, now: datetime | None = None) -> dict:
    exported_at = now or utcnow()
    return {
        "links": [link.as_dict() for link in store.links.values()],
        "groups": [group.as_dict() for group in store.groups.values()],
        "exportDate": exported_at.isoformat(),
        "version": EXPORT_VERSION,
    }


def export_filename(now: datetime | None = None) -> str:
    exported_at = now or utcnow()
    return f"linkgrove-backup-{exported_at.date().isoformat()}.json"


def parse_import_payload(data) -> tuple[list[Link], list[Group]]:
    """Validate an export file and keep only complete link/group records."""
    if not isinstance(data, dict):
        raise ValidationError("Invalid file format")
    raw_links = data.get("links")
    raw_groups = data.get("groups")
    if not isinstance(raw_links, list) or not isinstance(raw_groups, list):
        raise ValidationError("Invalid file format")
    return parse_records(raw_links, raw_groups)


def import_payload(engine, data) -> dict:
    links, groups = parse_import_payload(data)
    engine.replace_all(links, groups)
    return {
        "links": len(engine.store.links),
        "groups": len(engine.store.groups),
        "discarded_links": len(data["links"]) - len(links),
        "discarded_groups": len(data["groups"]) - len(groups),
    }
