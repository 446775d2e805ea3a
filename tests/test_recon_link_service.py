import pytest

from recon_app.models import LinkStatus, VistaContract, VistaEmployee, db
from recon_app.reconciliation import BatchMeta, ConflictError, NotFoundError, ValidationError


def _import_contracts(service, tenant, *numbers):
    service.import_rows(
        "contract",
        [{"contract_number": number, "description": f"Job {number}"} for number in numbers],
        BatchMeta(tenant_id=tenant.id, file_name="contracts.csv"),
    )
    db.session.expire_all()
    return [
        db.session.execute(db.select(VistaContract).filter_by(contract_number=number)).scalar_one()
        for number in numbers
    ]


def test_link_sets_manual_match_and_actor(service, tenant, user, make_project):
    project = make_project()
    (record,) = _import_contracts(service, tenant, "C-1")

    linked = service.link("contract", record.id, project.id, tenant.id, user.id, confidence=0.9)

    assert linked.link_status == LinkStatus.MANUAL_MATCHED
    assert linked.linked_project_id == project.id
    assert linked.link_confidence == pytest.approx(0.9)
    assert linked.linked_by == user.id
    assert linked.linked_at is not None


def test_second_link_to_claimed_target_conflicts_and_changes_nothing(service, tenant, user, make_project):
    project = make_project()
    first, second = _import_contracts(service, tenant, "C-1", "C-2")
    service.link("contract", first.id, project.id, tenant.id, user.id)

    with pytest.raises(ConflictError) as excinfo:
        service.link("contract", second.id, project.id, tenant.id, user.id)

    error = excinfo.value
    assert error.holder_id == first.id
    assert error.holder_key == "C-1"
    assert error.holder_name == "Job C-1"
    assert "Already linked to Vista contract #C-1" in str(error)

    db.session.expire_all()
    assert db.session.get(VistaContract, first.id).linked_project_id == project.id
    untouched = db.session.get(VistaContract, second.id)
    assert untouched.link_status == LinkStatus.UNMATCHED
    assert untouched.linked_project_id is None


def test_unique_constraint_backs_up_the_holder_check(service, tenant, user, make_project, monkeypatch):
    project = make_project()
    first, second = _import_contracts(service, tenant, "C-1", "C-2")
    service.link("contract", first.id, project.id, tenant.id, user.id)

    real_find_holder = service.links.find_holder
    calls = []

    def racing_find_holder(descriptor, canonical_id, *, exclude_id=None):
        calls.append(canonical_id)
        if len(calls) == 1:
            return None
        return real_find_holder(descriptor, canonical_id, exclude_id=exclude_id)

    monkeypatch.setattr(service.links, "find_holder", racing_find_holder)

    with pytest.raises(ConflictError) as excinfo:
        service.link("contract", second.id, project.id, tenant.id, user.id)

    assert len(calls) == 2
    assert excinfo.value.holder_id == first.id
    assert excinfo.value.holder_key == "C-1"
    db.session.expire_all()
    untouched = db.session.get(VistaContract, second.id)
    assert untouched.link_status == LinkStatus.UNMATCHED
    assert untouched.linked_project_id is None
    assert db.session.get(VistaContract, first.id).linked_project_id == project.id


def test_same_target_may_be_held_by_different_record_types(service, tenant, user, make_project):
    project = make_project(number="WO-5")
    (contract,) = _import_contracts(service, tenant, "C-5")
    service.import_rows(
        "work_order",
        [{"work_order_number": "5"}],
        BatchMeta(tenant_id=tenant.id, file_name="wo.csv"),
    )
    work_order = service.list_records("work_order", tenant.id)[0]

    service.link("contract", contract.id, project.id, tenant.id, user.id)
    service.link("work_order", work_order.id, project.id, tenant.id, user.id)

    assert work_order.linked_project_id == project.id


def test_relinking_same_target_is_idempotent(service, tenant, user, make_project):
    project = make_project()
    (record,) = _import_contracts(service, tenant, "C-1")
    first = service.link("contract", record.id, project.id, tenant.id, user.id)
    linked_at = first.linked_at

    again = service.link("contract", record.id, project.id, tenant.id, user.id)

    assert again.id == record.id
    assert again.link_status == LinkStatus.MANUAL_MATCHED
    assert again.linked_at == linked_at


def test_link_sets_secondary_links(service, tenant, user, make_project, make_department):
    project = make_project()
    department = make_department("30")
    (record,) = _import_contracts(service, tenant, "C-1")

    linked = service.link(
        "contract",
        record.id,
        project.id,
        tenant.id,
        user.id,
        extra_links={"department": department.id},
    )

    assert linked.linked_department_id == department.id


def test_link_rejects_unknown_secondary_kind(service, tenant, user, make_project):
    project = make_project()
    (record,) = _import_contracts(service, tenant, "C-1")

    with pytest.raises(ValidationError):
        service.link("contract", record.id, project.id, tenant.id, user.id, extra_links={"vendor": 1})
    with pytest.raises(ValidationError):
        service.link("contract", record.id, project.id, tenant.id, user.id, confidence=1.5)


def test_link_missing_record_or_target_raises_not_found(service, tenant, other_tenant, user, make_project):
    project = make_project()
    foreign = make_project(number="P-200", tenant_id=other_tenant.id)
    (record,) = _import_contracts(service, tenant, "C-1")

    with pytest.raises(NotFoundError):
        service.link("contract", 9999, project.id, tenant.id, user.id)
    with pytest.raises(NotFoundError):
        service.link("contract", record.id, 9999, tenant.id, user.id)
    with pytest.raises(NotFoundError):
        service.link("contract", record.id, foreign.id, tenant.id, user.id)
    with pytest.raises(NotFoundError):
        service.link("contract", record.id, project.id, other_tenant.id, user.id)


def test_unlink_clears_links_and_frees_target(service, tenant, user, make_project, make_department):
    project = make_project()
    department = make_department("30")
    first, second = _import_contracts(service, tenant, "C-1", "C-2")
    service.link("contract", first.id, project.id, tenant.id, user.id, extra_links={"department": department.id})

    record = service.unlink("contract", first.id, tenant.id)

    assert record.link_status == LinkStatus.UNMATCHED
    assert record.linked_project_id is None
    assert record.linked_department_id is None
    assert record.link_confidence is None
    assert record.linked_by is None
    assert record.linked_at is None

    service.link("contract", second.id, project.id, tenant.id, user.id)
    assert service.stats(tenant.id)["contract"].unmatched == 1


def test_unlink_unmatched_record_is_noop(service, tenant):
    (record,) = _import_contracts(service, tenant, "C-1")
    updated_at = record.updated_at

    result = service.unlink("contract", record.id, tenant.id)

    assert result.link_status == LinkStatus.UNMATCHED
    assert result.updated_at == updated_at


def test_ignore_keeps_links_and_unlink_restores_unmatched(service, tenant, user, make_employee):
    employee = make_employee("Ana", "Diaz", employee_number="42")
    service.import_rows(
        "employee",
        [{"employee_number": "42", "first_name": "Ana", "last_name": "Diaz"}],
        BatchMeta(tenant_id=tenant.id, file_name="employees.csv"),
    )
    record = db.session.execute(db.select(VistaEmployee)).scalar_one()
    service.link("employee", record.id, employee.id, tenant.id, user.id)

    ignored = service.ignore("employee", record.id, tenant.id)
    assert ignored.link_status == LinkStatus.IGNORED
    assert ignored.linked_employee_id == employee.id

    restored = service.unlink("employee", record.id, tenant.id)
    assert restored.link_status == LinkStatus.UNMATCHED
    assert restored.linked_employee_id is None


def test_ignore_missing_record_raises_not_found(service, tenant):
    with pytest.raises(NotFoundError):
        service.ignore("vendor", 12345, tenant.id)
