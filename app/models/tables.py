# app/models/tables.py
from sqlalchemy import (
    JSON, Boolean, Column, Date, DateTime, ForeignKey, Integer, Numeric, String, Text,
    UniqueConstraint, func,
)
from sqlalchemy.orm import relationship

from app.core.database import Base

# Roles, referral states and viewing statuses are stored as plain strings.
# Their closed sets live in app.core.permissions and app.services.

# ==========================================
# 1. USERS (Staff)
# ==========================================
class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False)
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    role = Column(String(30), nullable=False, index=True)
    phone = Column(String(30))
    location = Column(String(200))
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class TeamAssignment(Base):
    __tablename__ = "team_agents"
    __table_args__ = (UniqueConstraint("team_leader_id", "agent_id", name="uq_team_leader_agent"),)

    id = Column(Integer, primary_key=True)
    team_leader_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    agent_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    is_active = Column(Boolean, default=True, nullable=False)
    assigned_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"))
    created_at = Column(DateTime, server_default=func.now())

    agent = relationship("User", foreign_keys=[agent_id])


class UserDocument(Base):
    __tablename__ = "user_documents"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    document_name = Column(String(255), nullable=False)
    file_name = Column(String(255), nullable=False)
    file_url = Column(Text, nullable=False)
    mime_type = Column(String(100))
    file_size = Column(Integer)
    uploaded_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"))
    created_at = Column(DateTime, server_default=func.now())


# ==========================================
# 2. SETUP TABLES
# ==========================================
class LeadStatus(Base):
    __tablename__ = "lead_statuses"

    id = Column(Integer, primary_key=True)
    status_name = Column(String(100), unique=True, nullable=False)
    code = Column(String(50), unique=True, nullable=False)
    color = Column(String(20), default="#6B7280")
    description = Column(Text, default="")
    is_active = Column(Boolean, default=True, nullable=False)
    can_be_referred = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, server_default=func.now())
    modified_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class PropertyStatus(Base):
    __tablename__ = "statuses"

    id = Column(Integer, primary_key=True)
    name = Column(String(100), unique=True, nullable=False)
    code = Column(String(50), unique=True, nullable=False)
    color = Column(String(20), default="#6B7280")
    description = Column(Text, default="")
    is_active = Column(Boolean, default=True, nullable=False)
    can_be_referred = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, server_default=func.now())
    modified_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class Category(Base):
    __tablename__ = "categories"

    id = Column(Integer, primary_key=True)
    name = Column(String(100), unique=True, nullable=False)
    code = Column(String(10), unique=True, nullable=False)
    description = Column(Text, default="")
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, server_default=func.now())
    modified_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class ReferenceSource(Base):
    __tablename__ = "reference_sources"

    id = Column(Integer, primary_key=True)
    source_name = Column(String(100), unique=True, nullable=False)
    created_at = Column(DateTime, server_default=func.now())


class Setting(Base):
    __tablename__ = "system_settings"

    setting_key = Column(String(100), primary_key=True)
    setting_value = Column(Text)
    description = Column(Text)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


# ==========================================
# 3. LEADS
# ==========================================
class Lead(Base):
    __tablename__ = "leads"

    id = Column(Integer, primary_key=True, index=True)
    date = Column(Date, nullable=False)
    customer_name = Column(String(200), nullable=False)
    phone_number = Column(String(30), index=True)
    agent_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), index=True)
    agent_name = Column(String(200))  # free text when the agent is not a system user
    price = Column(Numeric(12, 2))
    reference_source_id = Column(Integer, ForeignKey("reference_sources.id", ondelete="SET NULL"))
    operations_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"))
    added_by_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"))
    status_id = Column(Integer, ForeignKey("lead_statuses.id", ondelete="RESTRICT"), nullable=False, index=True)
    notes = Column(Text)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    # Many-to-one only: deleting a status must hit the FK, not null out leads
    status = relationship("LeadStatus")
    agent = relationship("User", foreign_keys=[agent_id])
    reference_source = relationship("ReferenceSource")
    referrals = relationship(
        "LeadReferral", back_populates="lead", cascade="all, delete-orphan",
        order_by="LeadReferral.referral_date.desc()",
    )


class LeadReferral(Base):
    __tablename__ = "referrals"

    id = Column(Integer, primary_key=True)
    lead_id = Column(Integer, ForeignKey("leads.id", ondelete="CASCADE"), nullable=False, index=True)
    agent_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"))
    name = Column(String(200), nullable=False)
    type = Column(String(20), default="employee", nullable=False)  # employee | custom
    referral_date = Column(DateTime, server_default=func.now(), nullable=False)
    external = Column(Boolean, default=False, nullable=False)
    status = Column(String(20), default="confirmed", nullable=False, index=True)
    referred_to_agent_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), index=True)
    referred_by_user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"))
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    lead = relationship("Lead", back_populates="referrals")


# ==========================================
# 4. PROPERTIES
# ==========================================
class Property(Base):
    __tablename__ = "properties"

    id = Column(Integer, primary_key=True, index=True)
    reference_number = Column(String(50), unique=True, index=True)
    status_id = Column(Integer, ForeignKey("statuses.id", ondelete="RESTRICT"), nullable=False)
    property_type = Column(String(10), default="sale", nullable=False)  # sale | rent
    location = Column(String(255), nullable=False)
    category_id = Column(Integer, ForeignKey("categories.id", ondelete="RESTRICT"), nullable=False)
    building_name = Column(String(200))
    owner_id = Column(Integer, ForeignKey("leads.id", ondelete="SET NULL"))
    owner_name = Column(String(200))
    phone_number = Column(String(30))
    surface = Column(Numeric(10, 2))
    details = Column(Text)
    interior_details = Column(Text)
    built_year = Column(Integer)
    view_type = Column(String(20))
    concierge = Column(Boolean, default=False)
    agent_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), index=True)
    agent_name = Column(String(200))
    operations_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"))
    price = Column(Numeric(12, 2), default=0)
    notes = Column(Text)
    listing_date = Column(Date)
    closed_date = Column(Date, index=True)
    main_image = Column(Text)
    image_gallery = Column(JSON, default=list)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    status = relationship("PropertyStatus")
    category = relationship("Category")
    owner = relationship("Lead")
    agent = relationship("User", foreign_keys=[agent_id])
    referrals = relationship(
        "PropertyReferral", back_populates="property", cascade="all, delete-orphan",
        order_by="PropertyReferral.referral_date.desc()",
    )


class PropertyReferral(Base):
    __tablename__ = "property_referrals"

    id = Column(Integer, primary_key=True)
    property_id = Column(Integer, ForeignKey("properties.id", ondelete="CASCADE"), nullable=False, index=True)
    agent_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"))
    name = Column(String(200), nullable=False)
    type = Column(String(20), default="employee", nullable=False)
    referral_date = Column(DateTime, server_default=func.now(), nullable=False)
    external = Column(Boolean, default=False, nullable=False)
    status = Column(String(20), default="confirmed", nullable=False, index=True)
    referred_to_agent_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), index=True)
    referred_by_user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"))
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    property = relationship("Property", back_populates="referrals")


# ==========================================
# 5. VIEWINGS
# ==========================================
class Viewing(Base):
    __tablename__ = "viewings"

    id = Column(Integer, primary_key=True, index=True)
    property_id = Column(Integer, ForeignKey("properties.id", ondelete="CASCADE"), nullable=False, index=True)
    lead_id = Column(Integer, ForeignKey("leads.id", ondelete="CASCADE"), nullable=False, index=True)
    agent_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), index=True)
    viewing_date = Column(Date, nullable=False)
    viewing_time = Column(String(10), nullable=False)
    is_serious = Column(Boolean, default=False, nullable=False)
    description = Column(Text)
    notes = Column(Text)
    created_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"))
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    property = relationship("Property")
    lead = relationship("Lead")
    agent = relationship("User", foreign_keys=[agent_id])
    # Insertion order; callers reverse for display
    updates = relationship(
        "ViewingUpdate", back_populates="viewing", cascade="all, delete-orphan",
        order_by="ViewingUpdate.id",
    )


class ViewingUpdate(Base):
    __tablename__ = "viewing_updates"

    id = Column(Integer, primary_key=True)
    viewing_id = Column(Integer, ForeignKey("viewings.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(String(30), nullable=False)
    update_text = Column(Text, nullable=False)
    update_date = Column(Date, nullable=False)
    created_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"))
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    viewing = relationship("Viewing", back_populates="updates")
    author = relationship("User", foreign_keys=[created_by])


# ==========================================
# 6. NOTIFICATIONS
# ==========================================
class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    type = Column(String(50), default="info", nullable=False)
    entity_type = Column(String(50))
    entity_id = Column(Integer)
    is_read = Column(Boolean, default=False, nullable=False, index=True)
    created_at = Column(DateTime, server_default=func.now())
