from flask import Blueprint

links_bp = Blueprint("links", __name__, url_prefix="/api/links")

from . import routes  # noqa: E402,F401
