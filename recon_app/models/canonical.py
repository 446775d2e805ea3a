# recon_app/models/canonical.py

"""
System-of-record entities that imported Vista rows reconcile against.

The reconciliation engine only reads these tables, except when promotion
creates a brand-new row for an orphan import.
"""

from sqlalchemy import Index, UniqueConstraint

from .base import BaseModel, db


class Department(BaseModel):
    __tablename__ = "departments"

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    department_number = db.Column(db.String(50), nullable=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)

    __table_args__ = (UniqueConstraint("tenant_id", "department_number", name="uq_departments_tenant_number"),)

    def __repr__(self):
        return f"<Department {self.department_number}>"


class Employee(BaseModel):
    __tablename__ = "employees"

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    employee_number = db.Column(db.String(50), nullable=True, index=True)
    first_name = db.Column(db.String(100), nullable=False)
    last_name = db.Column(db.String(100), nullable=False)
    email = db.Column(db.String(255), nullable=False)
    hire_date = db.Column(db.Date, nullable=True)
    employment_status = db.Column(db.String(20), nullable=False, default="active")
    department_id = db.Column(db.Integer, db.ForeignKey("departments.id"), nullable=True)

    department = db.relationship("Department")

    __table_args__ = (UniqueConstraint("tenant_id", "email", name="uq_employees_tenant_email"),)

    @property
    def full_name(self) -> str:
        return f"{self.first_name or ''} {self.last_name or ''}".strip()

    def __repr__(self):
        return f"<Employee {self.full_name}>"


class Customer(BaseModel):
    __tablename__ = "customers"

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    customer_owner = db.Column(db.String(255), nullable=False)
    customer_facility = db.Column(db.String(255), nullable=True)
    address = db.Column(db.String(255), nullable=True)
    city = db.Column(db.String(100), nullable=True)
    state = db.Column(db.String(50), nullable=True)
    zip_code = db.Column(db.String(20), nullable=True)
    active = db.Column(db.Boolean, nullable=False, default=True)

    __table_args__ = (Index("idx_customers_tenant_owner", "tenant_id", "customer_owner"),)

    def __repr__(self):
        return f"<Customer {self.customer_owner}>"


class Vendor(BaseModel):
    __tablename__ = "vendors"

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    vendor_name = db.Column(db.String(255), nullable=False)
    company_name = db.Column(db.String(255), nullable=True)
    address_line1 = db.Column(db.String(255), nullable=True)
    address_line2 = db.Column(db.String(255), nullable=True)
    city = db.Column(db.String(100), nullable=True)
    state = db.Column(db.String(50), nullable=True)
    zip_code = db.Column(db.String(20), nullable=True)
    status = db.Column(db.String(20), nullable=False, default="active")
    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    def __repr__(self):
        return f"<Vendor {self.vendor_name}>"


class Project(BaseModel):
    __tablename__ = "projects"

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    number = db.Column(db.String(50), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    client = db.Column(db.String(255), nullable=True)
    status = db.Column(db.String(50), nullable=False, default="Open")
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True)
    manager_id = db.Column(db.Integer, db.ForeignKey("employees.id"), nullable=True)
    department_id = db.Column(db.Integer, db.ForeignKey("departments.id"), nullable=True)

    customer = db.relationship("Customer")
    manager = db.relationship("Employee")
    department = db.relationship("Department")

    __table_args__ = (UniqueConstraint("tenant_id", "number", name="uq_projects_tenant_number"),)

    def __repr__(self):
        return f"<Project {self.number}>"
