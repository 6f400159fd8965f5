# app/schemas.py
import datetime as dt
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from app.middleware.sanitize import sanitize_input

# =======================
# 1. VALIDATOR MIXINS (Shared Logic)
# =======================

class SanitizedTextMixin:
    @field_validator(
        'name', 'status_name', 'source_name', 'customer_name', 'location', 'building_name',
        'owner_name', 'agent_name', 'description', 'details', 'interior_details', 'notes',
        'title', 'update_text', 'document_name',
        check_fields=False,
    )
    @classmethod
    def sanitize_text(cls, v):
        return sanitize_input(v)


class PhoneMixin:
    @field_validator('phone', 'phone_number', check_fields=False)
    @classmethod
    def validate_phone(cls, v: Optional[str]):
        if v is None or v.strip() == "":
            return None
        clean_phone = v.replace(" ", "").replace("-", "").replace("(", "").replace(")", "")
        if not clean_phone.lstrip("+").isdigit():
            raise ValueError('Phone number must contain only digits')
        if len(clean_phone.lstrip("+")) < 7 or len(clean_phone) > 20:
            raise ValueError('Phone number must be between 7 and 20 digits')
        return clean_phone


class EmailMixin:
    @field_validator('email', check_fields=False)
    @classmethod
    def validate_email(cls, v: Optional[str]):
        if v is None:
            return v
        v = v.strip()
        if '@' not in v or '.' not in v.split('@')[-1]:
            raise ValueError('Invalid email format')
        return v.lower()


# =======================
# 2. AUTH & USERS
# =======================

class LoginRequest(EmailMixin, BaseModel):
    email: str
    password: str


class UserBase(SanitizedTextMixin, PhoneMixin, EmailMixin, BaseModel):
    name: str = Field(..., min_length=2, max_length=200)
    email: str
    role: str
    phone: Optional[str] = None
    location: Optional[str] = None


class UserCreate(UserBase):
    password: str = Field(..., min_length=8)


class UserUpdate(SanitizedTextMixin, PhoneMixin, EmailMixin, BaseModel):
    name: Optional[str] = Field(None, min_length=2, max_length=200)
    email: Optional[str] = None
    role: Optional[str] = None
    phone: Optional[str] = None
    location: Optional[str] = None
    is_active: Optional[bool] = None
    password: Optional[str] = Field(None, min_length=8)


class UserOut(BaseModel):
    id: int
    name: str
    email: str
    role: str
    phone: Optional[str] = None
    location: Optional[str] = None
    is_active: bool
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserOut


class TeamAssignRequest(BaseModel):
    agent_id: int


class UserDocumentOut(BaseModel):
    id: int
    user_id: int
    document_name: str
    file_name: str
    file_url: str
    mime_type: Optional[str] = None
    file_size: Optional[int] = None
    uploaded_by: Optional[int] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# =======================
# 3. SETUP TABLES
# =======================

class LeadStatusCreate(SanitizedTextMixin, BaseModel):
    # Presence is checked by the router so the messages stay specific
    status_name: Optional[str] = None
    code: Optional[str] = None
    color: Optional[str] = None
    description: Optional[str] = None
    is_active: Optional[bool] = None
    can_be_referred: Optional[bool] = None


class LeadStatusUpdate(LeadStatusCreate):
    pass


class LeadStatusOut(BaseModel):
    id: int
    status_name: str
    code: str
    color: Optional[str] = None
    description: Optional[str] = None
    is_active: bool
    can_be_referred: bool
    created_at: Optional[datetime] = None
    modified_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class PropertyStatusCreate(SanitizedTextMixin, BaseModel):
    name: Optional[str] = None
    code: Optional[str] = None
    color: Optional[str] = None
    description: Optional[str] = None
    is_active: Optional[bool] = None
    can_be_referred: Optional[bool] = None


class PropertyStatusOut(BaseModel):
    id: int
    name: str
    code: str
    color: Optional[str] = None
    description: Optional[str] = None
    is_active: bool
    can_be_referred: bool
    is_terminal: bool = False

    class Config:
        from_attributes = True


class CategoryCreate(SanitizedTextMixin, BaseModel):
    name: Optional[str] = None
    code: Optional[str] = None
    description: Optional[str] = None
    is_active: Optional[bool] = None


class CategoryOut(BaseModel):
    id: int
    name: str
    code: str
    description: Optional[str] = None
    is_active: bool

    class Config:
        from_attributes = True


class ReferenceSourceCreate(SanitizedTextMixin, BaseModel):
    source_name: str = Field(..., min_length=1, max_length=100)


class ReferenceSourceOut(BaseModel):
    id: int
    source_name: str

    class Config:
        from_attributes = True


class SettingUpsert(BaseModel):
    setting_value: str
    description: Optional[str] = None


class SettingOut(BaseModel):
    setting_key: str
    setting_value: Optional[str] = None
    description: Optional[str] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# =======================
# 4. LEADS
# =======================

class LeadCreate(SanitizedTextMixin, PhoneMixin, BaseModel):
    date: Optional[dt.date] = None
    customer_name: str = Field(..., min_length=1, max_length=200)
    phone_number: Optional[str] = None
    agent_id: Optional[int] = None
    agent_name: Optional[str] = None
    price: Optional[Decimal] = Field(None, ge=0, le=Decimal("999999999.99"))
    reference_source_id: Optional[int] = None
    operations_id: Optional[int] = None
    status_id: int
    notes: Optional[str] = None


class LeadUpdate(SanitizedTextMixin, PhoneMixin, BaseModel):
    date: Optional[dt.date] = None
    customer_name: Optional[str] = Field(None, min_length=1, max_length=200)
    phone_number: Optional[str] = None
    agent_id: Optional[int] = None
    agent_name: Optional[str] = None
    price: Optional[Decimal] = Field(None, ge=0, le=Decimal("999999999.99"))
    reference_source_id: Optional[int] = None
    operations_id: Optional[int] = None
    status_id: Optional[int] = None
    notes: Optional[str] = None


class LeadOut(BaseModel):
    id: int
    date: dt.date
    customer_name: str
    phone_number: Optional[str] = None
    agent_id: Optional[int] = None
    agent_name: Optional[str] = None
    price: Optional[Decimal] = None
    reference_source_id: Optional[int] = None
    operations_id: Optional[int] = None
    added_by_id: Optional[int] = None
    status_id: int
    notes: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ReferRequest(BaseModel):
    referred_to_agent_id: Optional[int] = None


class ReferralOut(BaseModel):
    id: int
    agent_id: Optional[int] = None
    name: str
    type: str
    referral_date: datetime
    external: bool
    status: str
    referred_to_agent_id: Optional[int] = None
    referred_by_user_id: Optional[int] = None

    class Config:
        from_attributes = True


class LeadReferralOut(ReferralOut):
    lead_id: int


class PropertyReferralOut(ReferralOut):
    property_id: int


# =======================
# 5. PROPERTIES
# =======================

class PropertyCreate(SanitizedTextMixin, PhoneMixin, BaseModel):
    reference_number: Optional[str] = Field(None, max_length=50)
    status_id: int
    property_type: str = Field("sale", pattern="^(sale|rent)$")
    location: str = Field(..., min_length=1, max_length=255)
    category_id: int
    building_name: Optional[str] = None
    owner_id: Optional[int] = None
    owner_name: Optional[str] = None
    phone_number: Optional[str] = None
    surface: Optional[Decimal] = Field(None, ge=0)
    details: Optional[str] = None
    interior_details: Optional[str] = None
    built_year: Optional[int] = Field(None, ge=1800)
    view_type: Optional[str] = None
    concierge: bool = False
    agent_id: Optional[int] = None
    operations_id: Optional[int] = None
    price: Optional[Decimal] = Field(None, ge=0, le=Decimal("999999999.99"))
    notes: Optional[str] = None
    listing_date: Optional[date] = None
    closed_date: Optional[date] = None
    main_image: Optional[str] = None
    image_gallery: List[str] = []


class PropertyUpdate(SanitizedTextMixin, PhoneMixin, BaseModel):
    reference_number: Optional[str] = Field(None, max_length=50)
    status_id: Optional[int] = None
    property_type: Optional[str] = Field(None, pattern="^(sale|rent)$")
    location: Optional[str] = Field(None, min_length=1, max_length=255)
    category_id: Optional[int] = None
    building_name: Optional[str] = None
    owner_id: Optional[int] = None
    owner_name: Optional[str] = None
    phone_number: Optional[str] = None
    surface: Optional[Decimal] = Field(None, ge=0)
    details: Optional[str] = None
    interior_details: Optional[str] = None
    built_year: Optional[int] = Field(None, ge=1800)
    view_type: Optional[str] = None
    concierge: Optional[bool] = None
    agent_id: Optional[int] = None
    operations_id: Optional[int] = None
    price: Optional[Decimal] = Field(None, ge=0, le=Decimal("999999999.99"))
    notes: Optional[str] = None
    listing_date: Optional[date] = None
    closed_date: Optional[date] = None
    main_image: Optional[str] = None
    image_gallery: Optional[List[str]] = None


class PropertyOut(BaseModel):
    id: int
    reference_number: Optional[str] = None
    status_id: int
    property_type: str
    location: str
    category_id: int
    building_name: Optional[str] = None
    owner_id: Optional[int] = None
    owner_name: Optional[str] = None
    phone_number: Optional[str] = None
    surface: Optional[Decimal] = None
    details: Optional[str] = None
    interior_details: Optional[str] = None
    built_year: Optional[int] = None
    view_type: Optional[str] = None
    concierge: Optional[bool] = None
    agent_id: Optional[int] = None
    agent_name: Optional[str] = None
    operations_id: Optional[int] = None
    price: Optional[Decimal] = None
    notes: Optional[str] = None
    listing_date: Optional[date] = None
    closed_date: Optional[date] = None
    main_image: Optional[str] = None
    image_gallery: Optional[List[str]] = None

    class Config:
        from_attributes = True


# =======================
# 6. VIEWINGS
# =======================

class ViewingCreate(SanitizedTextMixin, BaseModel):
    property_id: int
    lead_id: int
    agent_id: Optional[int] = None
    viewing_date: date
    viewing_time: str = Field(..., pattern=r"^\d{1,2}:\d{2}$")
    is_serious: bool = False
    description: Optional[str] = None
    notes: Optional[str] = None


class ViewingEdit(SanitizedTextMixin, BaseModel):
    viewing_date: Optional[date] = None
    viewing_time: Optional[str] = Field(None, pattern=r"^\d{1,2}:\d{2}$")
    is_serious: Optional[bool] = None
    description: Optional[str] = None
    notes: Optional[str] = None
    agent_id: Optional[int] = None


class ViewingUpdateCreate(SanitizedTextMixin, BaseModel):
    status: str
    update_text: str = Field(..., min_length=1, max_length=2000)
    update_date: Optional[date] = None


class ViewingUpdateEdit(SanitizedTextMixin, BaseModel):
    status: Optional[str] = None
    update_text: Optional[str] = Field(None, min_length=1, max_length=2000)
    update_date: Optional[date] = None


class ViewingUpdateOut(BaseModel):
    id: int
    viewing_id: int
    status: str
    update_text: str
    update_date: date
    created_by: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ViewingOut(BaseModel):
    id: int
    property_id: int
    lead_id: int
    agent_id: Optional[int] = None
    viewing_date: date
    viewing_time: str
    is_serious: bool
    description: Optional[str] = None
    notes: Optional[str] = None
    current_status: str
    updates: List[ViewingUpdateOut] = []
    created_at: Optional[datetime] = None


# =======================
# 7. NOTIFICATIONS
# =======================

class NotificationOut(BaseModel):
    id: int
    title: str
    message: str
    type: str
    entity_type: Optional[str] = None
    entity_id: Optional[int] = None
    is_read: bool
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# =======================
# 8. IMPORTS (camelCase on the wire)
# =======================

class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ImportSummary(CamelModel):
    total: int = 0
    valid: int = 0
    invalid: int = 0
    duplicate: int = 0
    will_import_count: int = 0


class ImportRowError(CamelModel):
    row: int
    message: str


class ImportPreviewRow(CamelModel):
    row: int
    classification: str
    original: Dict[str, Any]
    normalized: Dict[str, Any]
    resolved: Dict[str, Any]
    warnings: List[str]
    errors: List[str]


class ImportPreviewResponse(CamelModel):
    dry_run: bool = True
    summary: ImportSummary
    rows_preview: List[ImportPreviewRow]
    errors: List[ImportRowError]
    sheet_warning: Optional[str] = None


class ImportCommitResponse(CamelModel):
    imported_count: int
    updated_count: int = 0
    skipped_duplicates_count: int
    error_count: int
    imported: List[Dict[str, Any]] = []
    updated: List[Dict[str, Any]] = []
    skipped_duplicates: List[Dict[str, Any]] = []
    errors: List[ImportRowError] = []
    sheet_warning: Optional[str] = None
