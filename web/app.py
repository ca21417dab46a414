"""
Flask REST adapter for the photo pipeline.

The caller's identity is read from the X-User-Id header, which an upstream
authentication layer is expected to set.
"""

import logging
from datetime import datetime, timedelta, timezone

from flask import Flask, abort, g, jsonify, request, send_from_directory

from db.operations import DeadlineExceeded
from pipeline.ai_tagger import AITaggerError, AITaggingDisabled, AITaggingNotConfigured
from pipeline.derived_assets import CropRect, ImageEditError
from pipeline.processor import (
    PhotoForbidden,
    PhotoNotFound,
    PhotoProcessor,
    PhotoUpdate,
)

logger = logging.getLogger(__name__)

USER_HEADER = "X-User-Id"
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


def _parse_date(value: str | None, end_of_day: bool = False) -> datetime | None:
    """
    Parse YYYY-MM-DD or ISO 8601 into a naive UTC datetime.

    A date-only value used as an end bound covers the whole day. Values with
    an offset are converted to UTC to match the stored timestamps.
    """
    value = (value or "").strip()
    if not value:
        return None
    if value.endswith(("Z", "z")):
        value = value[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        abort(400, description=f"invalid date: {value}")

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    elif end_of_day and len(value) == 10:
        parsed += timedelta(days=1) - timedelta(microseconds=1)
    return parsed


def create_app(processor: PhotoProcessor | None = None) -> Flask:
    """
    Build the Flask application.

    Args:
        processor: Pipeline entry point. Built from the environment if None.
    """
    app = Flask(__name__)
    processor = processor or PhotoProcessor()
    app.extensions["photo_processor"] = processor

    @app.before_request
    def load_user():
        if request.path.startswith("/uploads/"):
            return None
        user_id = (request.headers.get(USER_HEADER) or "").strip()
        if not user_id:
            return jsonify({"error": "unauthorized"}), 401
        g.user_id = user_id
        return None

    # ─── Error mapping ──────────────────────────────────────────────────────────

    @app.errorhandler(PhotoNotFound)
    def handle_not_found(e):
        return jsonify({"error": str(e)}), 404

    @app.errorhandler(PhotoForbidden)
    def handle_forbidden(e):
        return jsonify({"error": str(e)}), 403

    @app.errorhandler(ValueError)
    @app.errorhandler(ImageEditError)
    def handle_bad_request(e):
        return jsonify({"error": str(e)}), 400

    @app.errorhandler(AITaggingDisabled)
    def handle_ai_disabled(e):
        return jsonify({"error": str(e)}), 409

    @app.errorhandler(AITaggingNotConfigured)
    def handle_ai_not_configured(e):
        return jsonify({"error": str(e)}), 503

    @app.errorhandler(AITaggerError)
    def handle_ai_error(e):
        return jsonify({"error": str(e)}), 502

    @app.errorhandler(DeadlineExceeded)
    def handle_timeout(e):
        return jsonify({"error": "ai tagging timed out"}), 504

    @app.errorhandler(400)
    def handle_abort_400(e):
        return jsonify({"error": e.description}), 400

    # ─── Routes ─────────────────────────────────────────────────────────────────

    @app.post("/api/photos")
    def upload_photo():
        file = request.files.get("file")
        if file is None or not file.filename:
            abort(400, description="missing file")

        result = processor.upload(
            g.user_id,
            file.stream,
            file.filename,
            mime_type=file.mimetype or None,
        )
        return jsonify(result.photo.to_dict()), 201

    @app.get("/api/photos")
    def list_photos():
        page = request.args.get("page", 1, type=int)
        limit = request.args.get("limit", DEFAULT_PAGE_SIZE, type=int)
        limit = min(max(limit, 1), MAX_PAGE_SIZE)

        photos, total = processor.list_photos(
            g.user_id,
            page=max(page, 1),
            limit=limit,
            query=request.args.get("q") or None,
            tag=request.args.get("tag") or None,
            start_date=_parse_date(request.args.get("startDate")),
            end_date=_parse_date(request.args.get("endDate"), end_of_day=True),
        )
        return jsonify({
            "photos": [p.to_dict() for p in photos],
            "total": total,
            "page": page,
            "limit": limit,
        })

    @app.get("/api/photos/<int:photo_id>")
    def get_photo(photo_id: int):
        return jsonify(processor.get_photo(photo_id, g.user_id).to_dict())

    @app.put("/api/photos/<int:photo_id>")
    def update_photo(photo_id: int):
        update = PhotoUpdate.from_dict(request.get_json(silent=True) or {})
        photo = processor.update_photo(photo_id, g.user_id, update)
        return jsonify(photo.to_dict())

    @app.delete("/api/photos/<int:photo_id>")
    def delete_photo(photo_id: int):
        processor.delete_photo(photo_id, g.user_id)
        return jsonify({"message": "photo deleted"})

    @app.post("/api/photos/<int:photo_id>/edit")
    def edit_photo(photo_id: int):
        body = request.get_json(silent=True) or {}
        try:
            crop = CropRect(
                int(body.get("cropX", 0)),
                int(body.get("cropY", 0)),
                int(body.get("cropWidth", 0)),
                int(body.get("cropHeight", 0)),
            )
            brightness = float(body.get("brightness", 0))
            contrast = float(body.get("contrast", 0))
            saturation = float(body.get("saturation", 0))
        except (TypeError, ValueError):
            abort(400, description="invalid edit parameters")

        photo = processor.edit_photo(
            photo_id,
            g.user_id,
            crop=crop,
            brightness=brightness,
            contrast=contrast,
            saturation=saturation,
        )
        return jsonify(photo.to_dict()), 201

    @app.post("/api/photos/<int:photo_id>/ai-tags")
    def generate_ai_tags(photo_id: int):
        photo = processor.generate_ai_tags(photo_id, g.user_id)
        return jsonify(photo.to_dict())

    @app.get("/uploads/<path:filename>")
    def serve_upload(filename: str):
        """Serve originals and thumbnails from the upload directory."""
        return send_from_directory(processor.store.root.resolve(), filename)

    return app


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    print("Starting Photo Library API...")
    print("Listening on http://127.0.0.1:5000")
    create_app().run(debug=False, host="127.0.0.1", port=5000)
