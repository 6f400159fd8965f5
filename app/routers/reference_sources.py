from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
import logging

from app.core.database import get_db
from app.core.errors import conflict_from_integrity_error
from app.core.permissions import Capability, require_capability
from app.core.security import get_current_user
from app.models import tables
from app.schemas import ReferenceSourceCreate, ReferenceSourceOut

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/")
def list_reference_sources(db: Session = Depends(get_db), current_user: tables.User = Depends(get_current_user)):
    sources = db.query(tables.ReferenceSource).order_by(tables.ReferenceSource.source_name).all()
    return {"success": True, "data": [ReferenceSourceOut.model_validate(s) for s in sources]}


@router.post("/", status_code=status.HTTP_201_CREATED)
def create_reference_source(
    payload: ReferenceSourceCreate,
    db: Session = Depends(get_db),
    current_user: tables.User = Depends(require_capability(Capability.MANAGE_REFERENCE_SOURCES)),
):
    if not payload.source_name:
        raise HTTPException(status_code=400, detail="Source name is required")
    try:
        source = tables.ReferenceSource(source_name=payload.source_name)
        db.add(source)
        db.commit()
        db.refresh(source)
        logger.info(f"Reference source '{source.source_name}' created by {current_user.email}")
        return {"success": True, "data": ReferenceSourceOut.model_validate(source), "message": "Reference source created successfully"}
    except IntegrityError as e:
        db.rollback()
        raise conflict_from_integrity_error(e, unique_message="Reference source already exists")
