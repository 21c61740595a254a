"""
Chain presets blueprint.

Endpoints:
    GET    /api/v1/chain-presets          -- list presets
    POST   /api/v1/chain-presets          -- create preset {"name": ...}
    DELETE /api/v1/chain-presets/<id>     -- delete preset
"""

import logging

from flask import Blueprint, jsonify, request

from app.core.exceptions import ConflictError, NotFoundError, ValidationError
from app.services import chain_preset_service
from app.services.audit_service import extract_audit_context
from app.utils.errors import E, error_response

logger = logging.getLogger(__name__)

chain_presets_bp = Blueprint("chain_presets", __name__, url_prefix="/api/v1")


@chain_presets_bp.route("/chain-presets", methods=["GET"])
def list_presets():
    presets = chain_preset_service.list_presets()
    return jsonify({"items": [p.to_dict() for p in presets], "total": len(presets)})


@chain_presets_bp.route("/chain-presets", methods=["POST"])
def create_preset():
    data = request.get_json(silent=True) or {}
    try:
        preset = chain_preset_service.create_preset(data.get("name"), context=extract_audit_context())
    except ValidationError as exc:
        return error_response(exc, code=E.VALIDATION_REQUIRED)
    except ConflictError as exc:
        return error_response(exc)
    return jsonify(preset.to_dict()), 201


@chain_presets_bp.route("/chain-presets/<int:preset_id>", methods=["DELETE"])
def delete_preset(preset_id):
    try:
        chain_preset_service.delete_preset(preset_id, context=extract_audit_context())
    except NotFoundError as exc:
        return error_response(exc)
    return jsonify({"deleted": preset_id})
