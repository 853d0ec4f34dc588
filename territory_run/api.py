"""HTTP endpoints for snapping windows and submitting claims.

``POST /api/snap`` always answers with a full point list: when matching fails
the points come back unsnapped together with an ``error`` string, so clients
can keep tracking on raw fixes.
"""

from __future__ import annotations

import logging
from typing import Any, List, Optional

from flask import Flask, jsonify, request
from flask.typing import ResponseReturnValue

from .errors import StorageError
from .geometry import polygon_wkt
from .models import Fix, TrackingMode
from .snapping import SnapReconciler
from .storage.base import StorageCollaborator

LOGGER = logging.getLogger(__name__)

RECONCILER_KEY = "TERRITORY_RECONCILER"
STORAGE_KEY = "TERRITORY_STORAGE"


def _parse_points(raw: Any) -> Optional[List[Fix]]:
    if not isinstance(raw, list) or not raw:
        return None
    try:
        return [Fix.from_dict(item) for item in raw]
    except (KeyError, TypeError, ValueError):
        return None


def create_app(
    reconciler: SnapReconciler | None = None,
    storage: StorageCollaborator | None = None,
) -> Flask:
    app = Flask(__name__)
    app.config[RECONCILER_KEY] = reconciler
    app.config[STORAGE_KEY] = storage

    @app.post("/api/snap")
    def snap() -> ResponseReturnValue:
        body = request.get_json(silent=True) or {}
        points = _parse_points(body.get("points"))
        if points is None:
            return jsonify({"points": []}), 400
        try:
            mode = TrackingMode.parse(body.get("mode") or TrackingMode.WALK_RUN)
        except ValueError as exc:
            return jsonify({"points": [], "error": str(exc)}), 400
        snapper: SnapReconciler | None = app.config[RECONCILER_KEY]
        if snapper is None:
            snapper = SnapReconciler(batch_size=max(1, len(points)))
            app.config[RECONCILER_KEY] = snapper
        outcome = snapper.reconcile(points, mode)
        payload: dict[str, Any] = {"points": [fix.to_dict() for fix in outcome.fixes]}
        if outcome.error:
            payload["error"] = outcome.error
        if outcome.profile:
            payload["profile"] = outcome.profile
        return jsonify(payload)

    @app.post("/api/claim")
    def claim() -> ResponseReturnValue:
        body = request.get_json(silent=True) or {}
        user_id = body.get("userId") or request.headers.get("X-User-Id")
        if not user_id:
            return jsonify({"message": "Unauthorized"}), 401
        coordinates = body.get("polygon") or []
        try:
            points = [(float(lat), float(lng)) for lng, lat in coordinates]
        except (TypeError, ValueError):
            points = []
        wkt_text = polygon_wkt(points)
        if wkt_text is None:
            return jsonify({"message": "Not enough points to claim."}), 400
        backend: StorageCollaborator | None = app.config[STORAGE_KEY]
        if backend is None:
            return jsonify({"message": "Storage backend not configured."}), 503
        try:
            result = backend.claim_territory(
                str(user_id), str(body.get("cityId")), str(body.get("sessionId")), wkt_text
            )
        except StorageError as exc:
            LOGGER.info("Claim rejected for user=%s: %s", user_id, exc)
            return jsonify({"message": str(exc)}), 500
        return jsonify({"message": result.message, "data": result.data})

    return app


__all__ = ["create_app"]
