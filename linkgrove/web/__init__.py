from flask import Blueprint

web_bp = Blueprint("web", __name__, url_prefix="/shell")

from linkgrove.web import routes  # noqa: E402,F401
