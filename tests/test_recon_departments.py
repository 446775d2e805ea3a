import pytest

from recon_app.models import Department, LinkStatus, VistaContract, VistaWorkOrder, db
from recon_app.reconciliation import BatchMeta, NotFoundError, ValidationError


def _import_jobs(service, tenant, contracts=(), work_orders=()):
    meta = BatchMeta(tenant_id=tenant.id, file_name="jobs.csv")
    if contracts:
        service.import_rows("contract", list(contracts), meta)
    if work_orders:
        service.import_rows("work_order", list(work_orders), meta)


def test_codes_are_grouped_with_usage_and_ranked(service, tenant, make_department):
    ten = make_department("10", "Service")
    twenty = make_department("20", "Construction")
    _import_jobs(
        service,
        tenant,
        contracts=[
            {"contract_number": "C-1", "department_code": "10"},
            {"contract_number": "C-2", "department_code": "10"},
            {"contract_number": "C-3", "department_code": "20A"},
        ],
        work_orders=[{"work_order_number": "1", "department_code": "10"}],
    )

    groups = service.find_department_duplicates(tenant.id, 0.5)

    assert [group.department_code for group in groups] == ["10", "20A"]
    exact = groups[0]
    assert exact.usage_count == {"contracts": 2, "work_orders": 1}
    assert exact.candidates[0].department_id == ten.id
    assert exact.candidates[0].exact_match is True
    assert exact.best_score == 1.0

    fuzzy = groups[1]
    assert fuzzy.candidates[0].department_id == twenty.id
    assert fuzzy.candidates[0].similarity == pytest.approx(0.67)
    assert fuzzy.candidates[0].exact_match is False


def test_link_code_stamps_every_job_record(service, tenant, user, make_department):
    department = make_department("30", "Plumbing")
    _import_jobs(
        service,
        tenant,
        contracts=[{"contract_number": "C-1", "department_code": "P30"}, {"contract_number": "C-2"}],
        work_orders=[{"work_order_number": "7", "department_code": "P30"}],
    )

    result = service.link_department_code("P30", department.id, tenant.id, user.id)

    assert result["contracts_updated"] == 1
    assert result["work_orders_updated"] == 1
    assert result["total_updated"] == 2
    db.session.expire_all()
    contract = db.session.execute(db.select(VistaContract).filter_by(contract_number="C-1")).scalar_one()
    work_order = db.session.execute(db.select(VistaWorkOrder)).scalar_one()
    assert contract.linked_department_id == department.id
    assert contract.link_status == LinkStatus.AUTO_MATCHED
    assert contract.linked_by == user.id
    assert work_order.linked_department_id == department.id
    assert service.find_department_duplicates(tenant.id, 0.0) == []


def test_link_code_validates_inputs(service, tenant, other_tenant, make_department):
    foreign = make_department("10", tenant_id=other_tenant.id)

    with pytest.raises(ValidationError):
        service.link_department_code("  ", foreign.id, tenant.id, None)
    with pytest.raises(NotFoundError):
        service.link_department_code("10", foreign.id, tenant.id, None)


def test_auto_link_exact_links_matching_codes_only(service, tenant, make_department):
    department = make_department("10", "Service")
    _import_jobs(
        service,
        tenant,
        contracts=[
            {"contract_number": "C-1", "department_code": "10"},
            {"contract_number": "C-2", "department_code": "99"},
        ],
        work_orders=[{"work_order_number": "1", "department_code": "10"}],
    )

    result = service.auto_link_departments(tenant.id, None)

    assert result["codes_linked"] == 1
    assert result["contracts_updated"] == 1
    assert result["work_orders_updated"] == 1
    assert result["details"][0]["department_name"] == "Service"
    db.session.expire_all()
    unlinked = db.session.execute(db.select(VistaContract).filter_by(contract_number="C-2")).scalar_one()
    assert unlinked.linked_department_id is None
    assert unlinked.link_status == LinkStatus.UNMATCHED
    linked = db.session.execute(db.select(VistaContract).filter_by(contract_number="C-1")).scalar_one()
    assert linked.linked_department_id == department.id


def test_ignored_records_keep_their_department_unset(service, tenant, make_department):
    make_department("10")
    _import_jobs(service, tenant, contracts=[{"contract_number": "C-1", "department_code": "10"}])
    record = service.list_records("contract", tenant.id)[0]
    service.ignore("contract", record.id, tenant.id)

    assert service.auto_link_departments(tenant.id, None)["codes_linked"] == 0
    db.session.expire_all()
    assert db.session.get(VistaContract, record.id).linked_department_id is None


def test_promote_codes_creates_missing_departments(service, tenant, make_department):
    make_department("10")
    _import_jobs(
        service,
        tenant,
        contracts=[{"contract_number": "C-1", "department_code": "10"}, {"contract_number": "C-2", "department_code": "40"}],
        work_orders=[{"work_order_number": "1", "department_code": " 50 "}],
    )

    result = service.promote_department_codes(tenant.id)

    assert result["imported"] == 2
    assert [item["department_code"] for item in result["results"]] == ["40", "50"]
    names = db.session.execute(db.select(Department.name).order_by(Department.department_number)).scalars().all()
    assert names == ["Department 10", "Department 40", "Department 50"]
    assert service.promote_department_codes(tenant.id)["imported"] == 0


def test_department_link_keeps_operator_attribution(service, tenant, user, make_project, make_department):
    project = make_project("P-1")
    department = make_department("60", "Controls")
    _import_jobs(service, tenant, contracts=[{"contract_number": "C-1", "department_code": "60"}])
    record = service.list_records("contract", tenant.id)[0]
    service.link("contract", record.id, project.id, tenant.id, user.id)

    service.link_department_code("60", department.id, tenant.id, None)

    db.session.expire_all()
    contract = db.session.get(VistaContract, record.id)
    assert contract.linked_department_id == department.id
    assert contract.link_status == LinkStatus.MANUAL_MATCHED
    assert contract.linked_by == user.id


def test_stats_report_department_code_coverage(service, tenant, make_department):
    department = make_department("10", "Service")
    make_department("90", "Unused")
    _import_jobs(
        service,
        tenant,
        contracts=[
            {"contract_number": "C-1", "department_code": "10"},
            {"contract_number": "C-2", "department_code": "20"},
            {"contract_number": "C-3"},
        ],
        work_orders=[{"work_order_number": "1", "department_code": "10"}],
    )
    service.link_department_code("10", department.id, tenant.id, None)

    departments = service.stats(tenant.id).departments

    assert departments.codes == 2
    assert departments.unlinked_codes == 1
    assert departments.linked_departments == 1
    assert departments.canonical_total == 2
    assert service.stats(tenant.id).to_dict()["departments"]["codes"] == 2
