from flask import Blueprint, jsonify, request

from services.services import (
    ServiceError,
    get_import_run,
    import_firmware_countries,
    import_firmware_log,
    import_legacy_log,
    list_import_runs,
    save_upload,
)


bp = Blueprint("import_api", __name__, url_prefix="/api/import")


def _error(e: ServiceError):
    body = {"ok": False, "error": str(e)}
    body.update(e.payload)
    return jsonify(body), e.status_code


def _source_path():
    """Path of the uploaded file when one is sent, else None (configured path)."""
    if "file" not in request.files:
        return None
    return save_upload(request.files.get("file"), content_length=request.content_length)


@bp.post("/legacy")
def import_legacy():
    try:
        summary = import_legacy_log(_source_path())
    except ServiceError as e:
        return _error(e)
    return jsonify(summary), 200


@bp.post("/firmware")
def import_firmware():
    try:
        summary = import_firmware_log(_source_path())
    except ServiceError as e:
        return _error(e)
    return jsonify(summary), 200


@bp.post("/firmware/countries")
def import_countries():
    try:
        summary = import_firmware_countries(_source_path())
    except ServiceError as e:
        return _error(e)
    return jsonify(summary), 200


@bp.get("/runs")
def runs_list():
    try:
        items = list_import_runs(request.args.get("limit", 50))
    except ServiceError as e:
        return _error(e)
    return jsonify({"items": items, "count": len(items)})


@bp.get("/runs/<run_id>")
def runs_get(run_id: str):
    try:
        run = get_import_run(run_id)
    except ServiceError as e:
        return _error(e)
    return jsonify(run)
