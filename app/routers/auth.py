from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
import logging

from app.core.database import get_db
from app.core.permissions import ROLE_CAPABILITIES, capabilities_for, normalize_role
from app.core.security import create_access_token, get_current_user, verify_password
from app.models import tables
from app.schemas import LoginRequest, TokenResponse, UserOut

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/login", response_model=TokenResponse)
def login(login_data: LoginRequest, db: Session = Depends(get_db)):
    # 1. Find User
    user = db.query(tables.User).filter(tables.User.email == login_data.email).first()

    # 2. Validate Password
    if not user or not verify_password(login_data.password, user.password_hash):
        logger.warning(f"Failed login for {login_data.email}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="User account is inactive")

    # 3. Generate Token
    access_token = create_access_token(data={"sub": user.email, "role": user.role})
    logger.info(f"User {user.email} logged in")
    return {"access_token": access_token, "token_type": "bearer", "user": user}


@router.get("/me")
def read_users_me(current_user: tables.User = Depends(get_current_user)):
    return {"success": True, "data": UserOut.model_validate(current_user)}


@router.get("/capabilities")
def read_capabilities(current_user: tables.User = Depends(get_current_user)):
    """The caller's capabilities plus the full role table, for UI gating."""
    role = normalize_role(current_user.role)
    return {
        "success": True,
        "data": {
            "role": role.value if role else current_user.role,
            "capabilities": sorted(c.value for c in capabilities_for(current_user.role)),
            "roles": {
                r.value: sorted(c.value for c in caps) for r, caps in ROLE_CAPABILITIES.items()
            },
        },
    }
