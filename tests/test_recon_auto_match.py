import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from recon_app.models import ImportBatch, LinkStatus, VistaContract, VistaCustomer, VistaEmployee, VistaWorkOrder, db
from recon_app.reconciliation import BatchMeta, TransactionFailure


def _import(service, tenant, entity_type, rows):
    return service.import_rows(entity_type, rows, BatchMeta(tenant_id=tenant.id, file_name=f"{entity_type}.csv"))


def _get(model, **filters):
    db.session.expire_all()
    return db.session.execute(db.select(model).filter_by(**filters)).scalar_one()


def test_contract_matches_employee_by_number(service, tenant, make_employee):
    employee = make_employee("Ana", "Diaz", employee_number="42")
    _import(service, tenant, "contract", [{"contract_number": "C-100", "employee_number": "42"}])

    summary = service.auto_match("contract", tenant.id)

    record = _get(VistaContract, contract_number="C-100")
    assert summary.matched == 1
    assert summary.total == 1
    assert record.link_status == LinkStatus.AUTO_MATCHED
    assert record.link_confidence == pytest.approx(1.0)
    assert record.linked_employee_id == employee.id
    assert record.linked_project_id is None
    assert record.linked_at is not None


def test_contract_rules_resolve_every_reference(service, tenant, make_employee, make_customer, make_department, make_project):
    employee = make_employee(employee_number="7")
    customer = make_customer(owner="Acme Corporation")
    department = make_department("20")
    project = make_project(number="C-300", name="Clinic")
    _import(
        service,
        tenant,
        "contract",
        [
            {
                "contract_number": "C-300",
                "employee_number": "7",
                "department_code": "20",
                "customer_name": "ACME CORPORATION",
            }
        ],
    )

    service.auto_match("contract", tenant.id)

    record = _get(VistaContract, contract_number="C-300")
    assert record.linked_project_id == project.id
    assert record.linked_employee_id == employee.id
    assert record.linked_customer_id == customer.id
    assert record.linked_department_id == department.id
    assert record.link_confidence == pytest.approx(1.0)


def test_records_without_any_resolved_rule_stay_unmatched(service, tenant):
    _import(service, tenant, "work_order", [{"work_order_number": "900", "employee_number": "999"}])

    summary = service.auto_match("work_order", tenant.id)

    assert summary.matched == 0
    record = _get(VistaWorkOrder, work_order_number="900")
    assert record.link_status == LinkStatus.UNMATCHED
    assert record.link_confidence is None


def test_claimed_primary_target_is_not_counted(service, tenant, user, make_project):
    project = make_project(number="C-2", name="Warehouse")
    _import(service, tenant, "contract", [{"contract_number": "C-1"}, {"contract_number": "C-2"}])
    holder = _get(VistaContract, contract_number="C-1")
    service.link("contract", holder.id, project.id, tenant.id, user.id)

    summary = service.auto_match("contract", tenant.id)

    assert summary.matched == 0
    record = _get(VistaContract, contract_number="C-2")
    assert record.link_status == LinkStatus.UNMATCHED
    assert record.linked_project_id is None


def test_duplicate_employee_numbers_resolve_to_first_canonical(service, tenant, make_employee):
    employee = make_employee("Ana", "Diaz", employee_number="42")
    make_employee("Ana", "Diaz", employee_number="42", email="dup@example.com")
    _import(service, tenant, "employee", [{"employee_number": "42", "first_name": "Ana", "last_name": "Diaz"}])

    service.auto_match("employee", tenant.id)

    record = _get(VistaEmployee, employee_number="42")
    assert record.linked_employee_id == employee.id


def test_manual_and_ignored_records_are_not_touched(service, tenant, user, make_employee, make_project):
    make_employee(employee_number="5")
    project = make_project(number="P-1")
    _import(
        service,
        tenant,
        "contract",
        [{"contract_number": "C-10", "employee_number": "5"}, {"contract_number": "C-11", "employee_number": "5"}],
    )
    manual = _get(VistaContract, contract_number="C-10")
    ignored = _get(VistaContract, contract_number="C-11")
    service.link("contract", manual.id, project.id, tenant.id, user.id)
    service.ignore("contract", ignored.id, tenant.id)

    summary = service.auto_match("contract", tenant.id)

    assert summary.total == 0
    assert _get(VistaContract, contract_number="C-10").link_status == LinkStatus.MANUAL_MATCHED
    assert _get(VistaContract, contract_number="C-11").linked_employee_id is None


def test_customer_type_has_no_structural_rules(service, tenant, make_customer):
    make_customer(owner="Acme Corporation")
    _import(service, tenant, "customer", [{"customer_number": "1", "name": "Acme Corporation"}])

    summary = service.auto_match("customer", tenant.id)

    assert summary.matched == 0
    assert _get(VistaCustomer, customer_number="1").link_status == LinkStatus.UNMATCHED


def test_other_tenants_canonicals_are_never_used(service, tenant, other_tenant, make_employee):
    make_employee(employee_number="42", tenant_id=other_tenant.id)
    _import(service, tenant, "contract", [{"contract_number": "C-1", "employee_number": "42"}])

    assert service.auto_match("contract", tenant.id).matched == 0


def test_import_with_auto_match_records_count_on_batch(service, tenant, make_employee):
    make_employee(employee_number="42")

    batch = service.import_rows(
        "contract",
        [{"contract_number": "C-1", "employee_number": "42"}, {"contract_number": "C-2"}],
        BatchMeta(tenant_id=tenant.id, file_name="contracts.csv"),
        auto_match=True,
    )

    assert db.session.get(ImportBatch, batch.id).records_auto_matched == 1


def test_batch_auto_match_count_excludes_older_batches(service, tenant, make_employee):
    _import(service, tenant, "contract", [{"contract_number": "C-0", "employee_number": "42"}])
    make_employee(employee_number="42")
    make_employee(employee_number="43")

    batch = service.import_rows(
        "contract",
        [{"contract_number": "C-1", "employee_number": "43"}],
        BatchMeta(tenant_id=tenant.id, file_name="contracts-2.csv"),
        auto_match=True,
    )

    statuses = {record.contract_number: record.link_status for record in service.list_records("contract", tenant.id)}
    assert statuses == {"C-0": LinkStatus.AUTO_MATCHED, "C-1": LinkStatus.AUTO_MATCHED}
    assert db.session.get(ImportBatch, batch.id).records_auto_matched == 1


def test_store_failure_rolls_back_whole_pass(service, tenant, make_employee, monkeypatch):
    make_employee(employee_number="42")
    _import(
        service,
        tenant,
        "contract",
        [{"contract_number": "C-1", "employee_number": "42"}, {"contract_number": "C-2", "employee_number": "42"}],
    )

    def failing_commit(self):
        raise OperationalError("COMMIT", {}, Exception("database is locked"))

    monkeypatch.setattr(Session, "commit", failing_commit)
    with pytest.raises(TransactionFailure) as excinfo:
        service.auto_match("contract", tenant.id)
    monkeypatch.undo()

    assert isinstance(excinfo.value.__cause__, OperationalError)
    assert _get(VistaContract, contract_number="C-1").link_status == LinkStatus.UNMATCHED
    assert _get(VistaContract, contract_number="C-2").linked_employee_id is None
