from flask import Blueprint

bp = Blueprint("routes", __name__)


@bp.get("/health")
def health():
    """Health check endpoint. Returns JSON."""
    return {"status": "ok"}


@bp.get("/healthz")
def healthz():
    """
    Fast liveness check for container orchestrators. No DB access, minimal overhead.
    """
    return "ok", 200
