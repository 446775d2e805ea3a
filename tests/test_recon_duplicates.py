import pytest

from recon_app.reconciliation import BatchMeta, ValidationError
from recon_app.reconciliation.duplicates import DuplicateCandidate, rank_candidates, round_score


def _import(service, tenant, entity_type, rows):
    service.import_rows(entity_type, rows, BatchMeta(tenant_id=tenant.id, file_name=f"{entity_type}.csv"))


def _candidate(canonical_id, score):
    return DuplicateCandidate(
        canonical_id=canonical_id,
        canonical_code=None,
        canonical_name=None,
        similarity=score,
        matched_on="name",
    )


def test_exact_name_outranks_abbreviation(service, tenant, make_customer):
    customer = make_customer(owner="Acme Corporation")
    _import(
        service,
        tenant,
        "customer",
        [{"customer_number": "1", "name": "Acme Corp"}, {"customer_number": "2", "name": "ACME CORPORATION"}],
    )

    groups = service.find_duplicates("customer", tenant.id, 0.5)

    assert [group.natural_key for group in groups] == ["2", "1"]
    assert groups[0].candidates[0].canonical_id == customer.id
    assert groups[0].best_score == 1.0
    assert groups[0].candidates[0].matched_on == "owner"
    assert groups[1].best_score >= 0.6
    assert groups[1].best_score == pytest.approx(0.73)


def test_candidates_are_capped_and_sorted(service, tenant, make_customer):
    for owner in (
        "Acme Corp",
        "Acme Co",
        "Acme Corporate",
        "Acme Corp Inc",
        "Acme Corps",
        "Acme Corporations",
        "Acme Corporation",
    ):
        make_customer(owner=owner)
    _import(service, tenant, "customer", [{"customer_number": "1", "name": "Acme Corp"}])

    (group,) = service.find_duplicates("customer", tenant.id, 0.3)

    scores = [candidate.similarity for candidate in group.candidates]
    assert len(scores) == 5
    assert scores == sorted(scores, reverse=True)
    assert group.candidates[0].canonical_name == "Acme Corp"


def test_candidates_below_threshold_are_dropped(service, tenant, make_customer):
    make_customer(owner="Zenith Plumbing")
    _import(service, tenant, "customer", [{"customer_number": "1", "name": "Acme Corp"}])

    assert service.find_duplicates("customer", tenant.id, 0.5) == []


def test_matching_last_name_raises_score_to_floor(service, tenant, make_employee):
    employee = make_employee("Robert", "Smith")
    _import(service, tenant, "employee", [{"employee_number": "9", "first_name": "Bob", "last_name": "Smith"}])

    (group,) = service.find_duplicates("employee", tenant.id, 0.5)

    candidate = group.candidates[0]
    assert candidate.canonical_id == employee.id
    assert candidate.similarity == pytest.approx(0.7)
    assert candidate.strong_match is True


def test_matching_city_boosts_score(service, tenant, make_vendor):
    make_vendor(vendor_name="Acme Corporation", city="Denver")
    _import(service, tenant, "vendor", [{"vendor_number": "V1", "name": "Acme Corp", "city": "DENVER"}])

    (group,) = service.find_duplicates("vendor", tenant.id)

    candidate = group.candidates[0]
    assert candidate.location_match is True
    assert candidate.similarity == pytest.approx(0.83)
    assert candidate.matched_on == "vendor_name"


def test_claimed_canonicals_are_not_proposed(service, tenant, user, make_customer):
    customer = make_customer(owner="Acme Corporation")
    _import(
        service,
        tenant,
        "customer",
        [{"customer_number": "1", "name": "Acme Corporation"}, {"customer_number": "2", "name": "Acme Corporation"}],
    )
    holder = service.list_records("customer", tenant.id, search="1")[0]
    service.link("customer", holder.id, customer.id, tenant.id, user.id)

    assert service.find_duplicates("customer", tenant.id) == []


def test_exact_project_number_scores_one(service, tenant, make_project):
    contract_project = make_project(number="C-100", name="Riverside Hospital")
    work_order_project = make_project(number="WO-77", name="Boiler Swap")
    _import(service, tenant, "contract", [{"contract_number": "C-100", "description": "Unrelated text"}])
    _import(service, tenant, "work_order", [{"work_order_number": "77", "description": "Something else"}])

    (contract_group,) = service.find_duplicates("contract", tenant.id)
    (work_order_group,) = service.find_duplicates("work_order", tenant.id)

    assert contract_group.candidates[0].canonical_id == contract_project.id
    assert contract_group.candidates[0].exact_key_match is True
    assert contract_group.best_score == 1.0
    assert work_order_group.candidates[0].canonical_id == work_order_project.id
    assert work_order_group.candidates[0].canonical_code == "WO-77"
    assert work_order_group.best_score == 1.0


def test_other_tenant_canonicals_are_not_scored(service, tenant, other_tenant, make_customer):
    make_customer(owner="Acme Corporation", tenant_id=other_tenant.id)
    _import(service, tenant, "customer", [{"customer_number": "1", "name": "Acme Corporation"}])

    assert service.find_duplicates("customer", tenant.id) == []


def test_invalid_threshold_is_rejected(service, tenant):
    with pytest.raises(ValidationError):
        service.find_duplicates("customer", tenant.id, 1.5)


def test_duplicate_stats_buckets_groups_by_best_score(service, tenant, make_customer):
    make_customer(owner="Acme Corporation")
    make_customer(owner="Northwind Traders")
    _import(
        service,
        tenant,
        "customer",
        [
            {"customer_number": "1", "name": "ACME CORPORATION"},
            {"customer_number": "2", "name": "Acme Corp"},
            {"customer_number": "3", "name": "Unrelated"},
        ],
    )

    stats = service.duplicate_stats(tenant.id, ["customer"])

    assert stats == {"customer": {"total_unlinked": 2, "high": 1, "medium": 1, "low": 0}}


def test_round_score_rounds_half_up():
    assert round_score(0.125) == 0.13
    assert round_score(0.8272) == 0.83
    assert round_score(0.994) == 0.99


def test_rank_candidates_breaks_ties_by_canonical_id():
    ranked = rank_candidates([_candidate(3, 0.9), _candidate(1, 0.9), _candidate(2, 0.4)], 0.5, 5)

    assert [candidate.canonical_id for candidate in ranked] == [1, 3]
