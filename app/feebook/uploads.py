from __future__ import annotations

from flask import Blueprint, abort, current_app, request, send_file

from app.feebook.audit import record_event
from app.feebook.db import db_session
from app.feebook.errors import json_error, json_ok
from app.feebook.rbac import any_actor, require_any_role
from app.feebook.storage import StorageError, guess_content_type, split_filename, storage_from_config, upload_file

bp = Blueprint("uploads", __name__)


@bp.post("/upload")
@require_any_role
def upload():
    f = request.files.get("file")
    if f is None or not f.filename:
        return json_error("No file provided", 400)

    stem, ext = split_filename(f.filename)
    file_ext = (request.form.get("fileExt") or "").strip().lstrip(".") or ext
    file_name = (request.form.get("fileName") or "").strip() or None
    folder_path = (request.form.get("folderPath") or "").strip() or None

    storage = storage_from_config(current_app.config)
    try:
        result = upload_file(
            storage,
            f.read(),
            file_ext=file_ext,
            folder_path=folder_path,
            file_name=file_name,
            content_type=f.mimetype,
        )
    except StorageError as e:
        current_app.logger.error("Upload failed (original=%s): %s", stem, e)
        return json_error("Failed to upload file", 500)

    s = db_session()
    record_event(
        s,
        actor=any_actor(),
        action="file.upload",
        entity_type="File",
        entity_id=result.key,
        metadata={"content_type": result.content_type, "size_bytes": result.size_bytes},
    )
    s.commit()
    return json_ok(result.as_dict(), message="File uploaded successfully")


@bp.get("/files/<path:key>")
@require_any_role
def files_get(key: str):
    storage = storage_from_config(current_app.config)
    if not storage.exists(key):
        abort(404)
    _, ext = split_filename(key.rsplit("/", 1)[-1])
    return send_file(storage.open(key), mimetype=guess_content_type(ext), download_name=key.rsplit("/", 1)[-1])
