# conftest.py

import os

import pytest

# Set testing environment BEFORE importing app so app.py picks TestingConfig
os.environ["FLASK_ENV"] = "testing"

# Now import app and other modules after environment is set
from app import app as flask_app  # noqa: E402
from recon_app.models import (  # noqa: E402
    Customer,
    Department,
    Employee,
    Project,
    Tenant,
    User,
    Vendor,
    db,
)
from recon_app.reconciliation import ReconciliationService  # noqa: E402


@pytest.fixture(scope="function")
def app():
    """Flask application with a freshly created schema for each test"""
    flask_app.config.update(
        {
            "TESTING": True,
            "RECON_ENABLED": True,
            "RECON_WORKER_ENABLED": False,
            "RECON_PLACEHOLDER_EMAIL_DOMAIN": "vista.imported",
            "ENABLE_FILE_LOGGING": False,
            "ENABLE_CONSOLE_LOGGING": False,
            "LOG_LEVEL": "WARNING",
        }
    )

    with flask_app.app_context():
        db.drop_all()
        db.create_all()
        yield flask_app
        db.session.remove()
        db.drop_all()


@pytest.fixture(autouse=True)
def app_context(app):
    """Automatically provide app context for all tests"""
    with app.app_context():
        yield


@pytest.fixture
def runner(app):
    """Create a test CLI runner for the Flask application"""
    return app.test_cli_runner()


@pytest.fixture
def service(app):
    return ReconciliationService.from_app(app)


@pytest.fixture
def tenant():
    tenant = Tenant(name="Acme Mechanical", slug="acme-mechanical")
    db.session.add(tenant)
    db.session.commit()
    return tenant


@pytest.fixture
def other_tenant():
    tenant = Tenant(name="Other Builders", slug="other-builders")
    db.session.add(tenant)
    db.session.commit()
    return tenant


@pytest.fixture
def user(tenant):
    user = User(tenant_id=tenant.id, email="operator@example.com", first_name="Dana", last_name="Reyes")
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture
def make_employee(tenant):
    counter = {"n": 0}

    def _make(first_name="Pat", last_name="Lee", employee_number=None, tenant_id=None, **kwargs):
        counter["n"] += 1
        employee = Employee(
            tenant_id=tenant_id or tenant.id,
            employee_number=employee_number,
            first_name=first_name,
            last_name=last_name,
            email=kwargs.pop("email", f"employee{counter['n']}@example.com"),
            **kwargs,
        )
        db.session.add(employee)
        db.session.commit()
        return employee

    return _make


@pytest.fixture
def make_customer(tenant):
    def _make(owner="Acme Corporation", facility=None, city=None, tenant_id=None, **kwargs):
        customer = Customer(
            tenant_id=tenant_id or tenant.id,
            customer_owner=owner,
            customer_facility=facility,
            city=city,
            **kwargs,
        )
        db.session.add(customer)
        db.session.commit()
        return customer

    return _make


@pytest.fixture
def make_vendor(tenant):
    def _make(vendor_name="Ferguson Supply", company_name=None, city=None, tenant_id=None, **kwargs):
        vendor = Vendor(
            tenant_id=tenant_id or tenant.id,
            vendor_name=vendor_name,
            company_name=company_name,
            city=city,
            **kwargs,
        )
        db.session.add(vendor)
        db.session.commit()
        return vendor

    return _make


@pytest.fixture
def make_department(tenant):
    def _make(department_number="10", name=None, tenant_id=None):
        department = Department(
            tenant_id=tenant_id or tenant.id,
            department_number=department_number,
            name=name or f"Department {department_number}",
        )
        db.session.add(department)
        db.session.commit()
        return department

    return _make


@pytest.fixture
def make_project(tenant):
    def _make(number="P-100", name="Main Street Tower", client=None, tenant_id=None, **kwargs):
        project = Project(tenant_id=tenant_id or tenant.id, number=number, name=name, client=client, **kwargs)
        db.session.add(project)
        db.session.commit()
        return project

    return _make
