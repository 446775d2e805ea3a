# recon_app/models/tenant.py

from .base import BaseModel, db


class Tenant(BaseModel):
    """Customer account that owns canonical and imported data."""

    __tablename__ = "tenants"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    slug = db.Column(db.String(100), unique=True, nullable=False, index=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    users = db.relationship("User", back_populates="tenant")

    def __repr__(self):
        return f"<Tenant {self.slug}>"


class User(BaseModel):
    """Operator identity used to stamp imports and links."""

    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    email = db.Column(db.String(255), unique=True, nullable=False)
    first_name = db.Column(db.String(100), nullable=True)
    last_name = db.Column(db.String(100), nullable=True)

    tenant = db.relationship("Tenant", back_populates="users")

    @property
    def display_name(self) -> str:
        name = f"{self.first_name or ''} {self.last_name or ''}".strip()
        return name or self.email

    def __repr__(self):
        return f"<User {self.email}>"
