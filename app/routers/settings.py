from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
import logging

from app.core.database import get_db
from app.core.permissions import Capability, require_capability
from app.models import tables
from app.schemas import SettingOut, SettingUpsert

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/")
def list_settings(
    db: Session = Depends(get_db),
    current_user: tables.User = Depends(require_capability(Capability.MANAGE_SETTINGS)),
):
    rows = db.query(tables.Setting).order_by(tables.Setting.setting_key).all()
    return {"success": True, "data": [SettingOut.model_validate(row) for row in rows]}


@router.get("/{key}")
def get_setting(
    key: str,
    db: Session = Depends(get_db),
    current_user: tables.User = Depends(require_capability(Capability.MANAGE_SETTINGS)),
):
    row = db.query(tables.Setting).filter(tables.Setting.setting_key == key).first()
    if not row:
        raise HTTPException(status_code=404, detail="Setting not found")
    return {"success": True, "data": SettingOut.model_validate(row)}


@router.put("/{key}")
def upsert_setting(
    key: str,
    payload: SettingUpsert,
    db: Session = Depends(get_db),
    current_user: tables.User = Depends(require_capability(Capability.MANAGE_SETTINGS)),
):
    try:
        row = db.query(tables.Setting).filter(tables.Setting.setting_key == key).first()
        if row is None:
            row = tables.Setting(setting_key=key)
            db.add(row)
        row.setting_value = payload.setting_value
        if payload.description is not None:
            row.description = payload.description
        db.commit()
        db.refresh(row)
        logger.info(f"Setting {key} set to {payload.setting_value!r} by {current_user.email}")
        return {"success": True, "data": SettingOut.model_validate(row), "message": "Setting saved successfully"}
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Database error saving setting {key}: {e}")
        raise HTTPException(status_code=500, detail="Database error occurred")
