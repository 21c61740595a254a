"""Chain preset service: administrator-managed chain names offered when triggering."""

import logging

from app.core.exceptions import ConflictError, NotFoundError, ValidationError
from app.models import db
from app.models.automation import ChainPreset
from app.services.audit_service import record_event

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 200


def list_presets():
    return ChainPreset.query.order_by(ChainPreset.name.asc()).all()


def create_preset(name, context=None):
    name = (name or "").strip() if isinstance(name, str) else ""
    if not name:
        raise ValidationError("name is required", details={"name": "required"})
    if len(name) > MAX_NAME_LENGTH:
        raise ValidationError(
            f"name must be at most {MAX_NAME_LENGTH} characters",
            details={"name": "too_long"},
        )
    if ChainPreset.query.filter_by(name=name).first():
        raise ConflictError("ChainPreset", "name", name)

    preset = ChainPreset(name=name)
    db.session.add(preset)
    db.session.commit()
    logger.info("Chain preset created: %s", name)
    record_event(
        "chain_preset.create",
        resource_type="chain_preset",
        resource_id=preset.id,
        details={"name": name},
        context=context,
    )
    return preset


def delete_preset(preset_id, context=None):
    preset = db.session.get(ChainPreset, preset_id)
    if preset is None:
        raise NotFoundError(resource="ChainPreset", resource_id=preset_id)
    name = preset.name
    db.session.delete(preset)
    db.session.commit()
    logger.info("Chain preset deleted: %s", name)
    record_event(
        "chain_preset.delete",
        resource_type="chain_preset",
        resource_id=preset_id,
        details={"name": name},
        context=context,
    )
