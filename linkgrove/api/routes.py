from __future__ import annotations

import json

from flask import Response, current_app, jsonify, request

from linkgrove.api import api_bp
from linkgrove.extensions import get_runtime
from linkgrove.services.bookmark_import import import_bookmark_html
from linkgrove.services.common import favicon_url
from linkgrove.services.data_transfer import (
    export_filename,
    export_payload,
    import_payload,
)
from linkgrove.services.errors import NotFoundError, PersistenceError, ValidationError


def _to_bool(value, default=False):
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def _json_body() -> dict:
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}


def _link_payload(link) -> dict:
    payload = link.as_dict()
    payload["favicon"] = favicon_url(link.url)
    return payload


def _read_upload(field_name: str) -> str | None:
    upload = request.files.get(field_name)
    if upload is None:
        return None
    return upload.read().decode("utf-8", errors="ignore")


@api_bp.errorhandler(ValidationError)
def handle_validation_error(exc: ValidationError):
    return jsonify(exc.as_dict()), 400


@api_bp.errorhandler(NotFoundError)
def handle_not_found(exc: NotFoundError):
    current_app.logger.warning("%s", exc)
    return jsonify(exc.as_dict()), 404


@api_bp.errorhandler(PersistenceError)
def handle_persistence_error(exc: PersistenceError):
    current_app.logger.error("Local store write failed: %s", exc)
    return jsonify({"error": "could not save changes"}), 500


@api_bp.before_request
def process_sync_messages():
    get_runtime().instance.process_messages()


@api_bp.route("/tree", methods=["GET"])
def tree_view():
    return jsonify(get_runtime().store.tree())


@api_bp.route("/links", methods=["GET"])
def links_list():
    store = get_runtime().store
    group_id = request.args.get("group_id")
    if _to_bool(request.args.get("ungrouped")):
        items = store.ungrouped_links()
    elif group_id:
        items = store.links_of(group_id)
    else:
        items = list(store.links.values())
    return jsonify({"items": [_link_payload(link) for link in items]})


@api_bp.route("/links", methods=["POST"])
def links_create():
    payload = _json_body()
    link = get_runtime().engine.add_link(payload)
    return jsonify(_link_payload(link)), 201


@api_bp.route("/links/<link_id>", methods=["GET"])
def links_get(link_id: str):
    link = get_runtime().store.get_link(link_id)
    if not link:
        return jsonify({"error": "link not found"}), 404
    return jsonify(_link_payload(link))


@api_bp.route("/links/<link_id>", methods=["PATCH"])
def links_update(link_id: str):
    payload = _json_body()
    link = get_runtime().engine.edit_link(link_id, payload)
    return jsonify(_link_payload(link))


@api_bp.route("/links/<link_id>", methods=["DELETE"])
def links_delete(link_id: str):
    deleted = get_runtime().engine.delete_link(link_id)
    return jsonify({"status": "deleted" if deleted else "absent"})


@api_bp.route("/links/<link_id>/move", methods=["POST"])
def links_move(link_id: str):
    payload = _json_body()
    link = get_runtime().engine.move_link(link_id, payload.get("groupId"))
    return jsonify(_link_payload(link))


@api_bp.route("/groups", methods=["GET"])
def groups_list():
    store = get_runtime().store
    parent_id = request.args.get("parent_id")
    if _to_bool(request.args.get("top_level")):
        items = store.top_level_groups()
    elif parent_id:
        items = store.subgroups(parent_id)
    else:
        items = list(store.groups.values())
    return jsonify({"items": [item.as_dict() for item in items]})


@api_bp.route("/groups", methods=["POST"])
def groups_create():
    payload = _json_body()
    group = get_runtime().engine.add_group(payload, payload.get("parentGroupId"))
    return jsonify(group.as_dict()), 201


@api_bp.route("/groups/<group_id>", methods=["PATCH"])
def groups_update(group_id: str):
    payload = _json_body()
    group = get_runtime().engine.edit_group(group_id, payload)
    return jsonify(group.as_dict())


@api_bp.route("/groups/<group_id>", methods=["DELETE"])
def groups_delete(group_id: str):
    result = get_runtime().engine.delete_group(group_id)
    return jsonify({"status": "deleted", **result.as_dict()})


@api_bp.route("/groups/<group_id>/move", methods=["POST"])
def groups_move(group_id: str):
    payload = _json_body()
    moved = get_runtime().engine.move_group(group_id, payload.get("targetGroupId"))
    return jsonify({"moved": moved})


@api_bp.route("/groups/<group_id>/parents", methods=["GET"])
def groups_parent_choices(group_id: str):
    store = get_runtime().store
    if not store.get_group(group_id):
        return jsonify({"error": "group not found"}), 404
    return jsonify({"items": store.parent_choices(group_id)})


@api_bp.route("/drop", methods=["POST"])
def drop_item():
    payload = _json_body()
    item = payload.get("item")
    if not isinstance(item, dict):
        return jsonify({"error": "drop item is required"}), 400
    result = get_runtime().engine.apply_drop(item, payload.get("targetGroupId"))
    return jsonify(result)


@api_bp.route("/export", methods=["GET"])
def export_data():
    payload = export_payload(get_runtime().store)
    return Response(
        json.dumps(payload, indent=2),
        content_type="application/json",
        headers={
            "Content-Disposition": f'attachment; filename="{export_filename()}"'
        },
    )


@api_bp.route("/import", methods=["POST"])
def import_data():
    raw = _read_upload("file")
    if raw is not None:
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError:
            return jsonify({"error": "Invalid file format"}), 400
    else:
        payload = request.get_json(silent=True)
    result = import_payload(get_runtime().engine, payload)
    return jsonify({"status": "imported", **result})


@api_bp.route("/import/html", methods=["POST"])
def import_html():
    html = _read_upload("file")
    if html is None:
        html = request.get_data(as_text=True)
    if not html.strip():
        return jsonify({"error": "bookmark file is required"}), 400
    result = import_bookmark_html(get_runtime().engine, html)
    return jsonify({"status": "imported", **result})


@api_bp.route("/clear", methods=["POST"])
def clear_data():
    payload = _json_body()
    if not _to_bool(payload.get("confirm")):
        return jsonify({"error": "confirmation required"}), 400
    get_runtime().engine.clear_all()
    return jsonify({"status": "cleared"})


@api_bp.route("/status", methods=["GET"])
def status():
    runtime = get_runtime()
    return jsonify(
        {
            **runtime.orchestrator.status(),
            "update_available": runtime.instance.update_available,
            "controller": runtime.controller.status(),
        }
    )


@api_bp.route("/connectivity", methods=["POST"])
def connectivity_update():
    payload = _json_body()
    if "online" not in payload:
        return jsonify({"error": "online flag is required"}), 400
    orchestrator = get_runtime().orchestrator
    changed = orchestrator.set_online(_to_bool(payload.get("online")))
    return jsonify({**orchestrator.status(), "changed": changed})


@api_bp.route("/sync/messages", methods=["GET"])
def sync_messages():
    instance = get_runtime().instance
    return jsonify({"last": instance.last_messages, "reloads": instance.reloads})


@api_bp.route("/sync/update", methods=["POST"])
def sync_update():
    instance = get_runtime().instance
    updated = instance.apply_update(timeout=current_app.config["SHELL_PROXY_TIMEOUT"])
    return jsonify({"updated": updated})
