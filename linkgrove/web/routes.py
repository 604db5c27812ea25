from concurrent.futures import TimeoutError as FutureTimeoutError

from flask import Response, current_app, jsonify, request

from linkgrove.extensions import get_runtime
from linkgrove.services.offline_cache import (
    OfflineFetchError,
    ResourceRequest,
    guess_destination,
)
from linkgrove.web import web_bp


@web_bp.route("/", defaults={"path": ""})
@web_bp.route("/<path:path>")
def shell_resource(path: str):
    controller = get_runtime().controller
    if not controller.running:
        return jsonify({"error": "offline cache controller is not running"}), 503

    url = controller.resolve(path)
    if request.query_string:
        url = f"{url}?{request.query_string.decode('utf-8', errors='ignore')}"
    resource = ResourceRequest(
        url=url,
        destination=guess_destination(path, request.headers.get("Sec-Fetch-Dest")),
    )
    try:
        result = controller.handle(resource).result(
            timeout=current_app.config["SHELL_PROXY_TIMEOUT"]
        )
    except OfflineFetchError as exc:
        current_app.logger.info("Shell resource unavailable: %s", exc)
        return jsonify({"error": "resource unavailable offline", "url": url}), 503
    except FutureTimeoutError:
        return jsonify({"error": "resource timed out", "url": url}), 504

    headers = {
        key: value
        for key, value in result.headers.items()
        if key.lower() in {"content-type", "cache-control", "etag", "last-modified"}
    }
    return Response(result.content, status=result.status_code, headers=headers)
