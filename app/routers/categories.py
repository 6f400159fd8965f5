from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
import logging

from app.core.database import get_db
from app.core.errors import conflict_from_integrity_error
from app.core.permissions import Capability, require_capability
from app.core.security import get_current_user
from app.models import tables
from app.schemas import CategoryCreate, CategoryOut

router = APIRouter()
logger = logging.getLogger(__name__)

DUPLICATE_MESSAGE = "Category with this name or code already exists"
IN_USE_MESSAGE = "Cannot delete category - it is being used by existing properties"


def _get_or_404(db: Session, category_id: int) -> tables.Category:
    row = db.query(tables.Category).filter(tables.Category.id == category_id).first()
    if not row:
        raise HTTPException(status_code=404, detail="Category not found")
    return row


@router.get("/")
def list_categories(
    active_only: bool = False,
    db: Session = Depends(get_db),
    current_user: tables.User = Depends(get_current_user),
):
    query = db.query(tables.Category)
    if active_only:
        query = query.filter(tables.Category.is_active.is_(True))
    return {"success": True, "data": [CategoryOut.model_validate(c) for c in query.order_by(tables.Category.name).all()]}


@router.post("/", status_code=status.HTTP_201_CREATED)
def create_category(
    payload: CategoryCreate,
    db: Session = Depends(get_db),
    current_user: tables.User = Depends(require_capability(Capability.MANAGE_PROPERTY_SETUP)),
):
    if not payload.name:
        raise HTTPException(status_code=400, detail="Category name is required")
    if not payload.code:
        raise HTTPException(status_code=400, detail="Category code is required")
    try:
        row = tables.Category(
            name=payload.name,
            code=payload.code.upper(),
            description=payload.description or "",
            is_active=True if payload.is_active is None else payload.is_active,
        )
        db.add(row)
        db.commit()
        db.refresh(row)
        logger.info(f"Category '{row.name}' created by {current_user.email}")
        return {"success": True, "data": CategoryOut.model_validate(row), "message": "Category created successfully"}
    except IntegrityError as e:
        db.rollback()
        raise conflict_from_integrity_error(e, unique_message=DUPLICATE_MESSAGE)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Database error creating category: {e}")
        raise HTTPException(status_code=500, detail="Database error occurred")


@router.put("/{category_id}")
def update_category(
    category_id: int,
    payload: CategoryCreate,
    db: Session = Depends(get_db),
    current_user: tables.User = Depends(require_capability(Capability.MANAGE_PROPERTY_SETUP)),
):
    row = _get_or_404(db, category_id)
    changes = payload.model_dump(exclude_unset=True, exclude_none=True)
    if "code" in changes:
        changes["code"] = changes["code"].upper()
    try:
        for field, value in changes.items():
            setattr(row, field, value)
        db.commit()
        db.refresh(row)
        return {"success": True, "data": CategoryOut.model_validate(row), "message": "Category updated successfully"}
    except IntegrityError as e:
        db.rollback()
        raise conflict_from_integrity_error(e, unique_message=DUPLICATE_MESSAGE)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Database error updating category {category_id}: {e}")
        raise HTTPException(status_code=500, detail="Database error occurred")


@router.delete("/{category_id}")
def delete_category(
    category_id: int,
    db: Session = Depends(get_db),
    current_user: tables.User = Depends(require_capability(Capability.MANAGE_PROPERTY_SETUP)),
):
    row = _get_or_404(db, category_id)
    try:
        db.delete(row)
        db.commit()
        logger.info(f"Category {category_id} deleted by {current_user.email}")
        return {"success": True, "message": "Category deleted successfully"}
    except IntegrityError as e:
        db.rollback()
        raise conflict_from_integrity_error(e, foreign_key_message=IN_USE_MESSAGE)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Database error deleting category {category_id}: {e}")
        raise HTTPException(status_code=500, detail="Database error occurred")
