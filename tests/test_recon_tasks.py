import pytest

from recon_app.models import LinkStatus, VistaContract, VistaEmployee, db
from recon_app.reconciliation import BatchMeta, TransactionFailure
from recon_app.reconciliation.celery_app import AUTO_MATCH_TASK, DEFAULT_QUEUE_NAME, build_beat_schedule, create_celery_app
from recon_app.reconciliation.service import ReconciliationService


@pytest.fixture
def celery_app(app, monkeypatch, tmp_path):
    monkeypatch.setitem(app.config, "CELERY_SQLITE_PATH", str(tmp_path / "celery.sqlite"))
    monkeypatch.setitem(app.config, "CELERY_CONFIG", {"task_always_eager": True, "task_eager_propagates": True})
    return create_celery_app(app)


def test_celery_defaults_to_sqlite_transport(celery_app, tmp_path):
    assert celery_app.conf.broker_url.startswith("sqla+sqlite:///")
    assert "celery.sqlite" in celery_app.conf.broker_url
    assert celery_app.conf.result_backend.startswith("db+sqlite:///")
    assert celery_app.conf.task_default_queue == DEFAULT_QUEUE_NAME
    assert celery_app.conf.task_always_eager is True
    assert "reconciliation.auto_match" in celery_app.tasks


def test_celery_config_accepts_json_string(app, monkeypatch, tmp_path):
    monkeypatch.setitem(app.config, "CELERY_SQLITE_PATH", str(tmp_path / "celery.sqlite"))
    monkeypatch.setitem(app.config, "CELERY_CONFIG", '{"worker_prefetch_multiplier": 4}')

    assert create_celery_app(app).conf.worker_prefetch_multiplier == 4


def test_beat_schedule_has_one_auto_match_entry_per_tenant():
    schedule = build_beat_schedule(
        {
            "RECON_SCHEDULED_TENANTS": (3, 7),
            "RECON_SCHEDULED_ENTITY_TYPES": ("contract", "employee"),
            "RECON_AUTO_MATCH_INTERVAL": 900,
        }
    )

    assert sorted(schedule) == ["auto-match-tenant-3", "auto-match-tenant-7"]
    entry = schedule["auto-match-tenant-7"]
    assert entry["task"] == AUTO_MATCH_TASK
    assert entry["schedule"] == 900.0
    assert entry["kwargs"] == {"tenant_id": 7, "entity_types": ["contract", "employee"]}
    assert entry["options"] == {"queue": DEFAULT_QUEUE_NAME, "expires": 900.0}
    assert build_beat_schedule({"RECON_SCHEDULED_TENANTS": ()}) == {}


def test_celery_app_carries_tenant_schedule(app, monkeypatch, tmp_path):
    monkeypatch.setitem(app.config, "CELERY_SQLITE_PATH", str(tmp_path / "celery.sqlite"))
    monkeypatch.setitem(app.config, "RECON_SCHEDULED_TENANTS", (5,))

    celery_app = create_celery_app(app)

    assert list(celery_app.conf.beat_schedule) == ["auto-match-tenant-5"]
    assert celery_app.conf.task_routes == {"reconciliation.*": {"queue": DEFAULT_QUEUE_NAME}}


def test_healthcheck_task_reports_ok(celery_app):
    payload = celery_app.tasks["reconciliation.healthcheck"].apply().get()

    assert payload["status"] == "ok"
    assert set(payload) == {"status", "timestamp", "worker_hostname"}


def test_auto_match_task_runs_each_type(celery_app, service, tenant, make_employee):
    employee = make_employee(employee_number="42")
    meta = BatchMeta(tenant_id=tenant.id, file_name="extract.csv")
    service.import_rows("contract", [{"contract_number": "C-1", "employee_number": "42"}], meta)
    service.import_rows("employee", [{"employee_number": "42", "first_name": "Pat", "last_name": "Lee"}], meta)

    result = celery_app.tasks["reconciliation.auto_match"].apply(
        kwargs={"tenant_id": tenant.id, "entity_types": ["contracts", "employee"]}
    ).get()

    assert result["status"] == "ok"
    assert result["tenant_id"] == tenant.id
    assert result["results"]["contract"]["matched"] == 1
    assert result["results"]["employee"]["status"] == "ok"

    db.session.expire_all()
    contract = db.session.execute(db.select(VistaContract)).scalar_one()
    vista_employee = db.session.execute(db.select(VistaEmployee)).scalar_one()
    assert contract.link_status == LinkStatus.AUTO_MATCHED
    assert vista_employee.linked_employee_id == employee.id


def test_auto_match_task_continues_after_failure(celery_app, app, tenant, monkeypatch):
    original = ReconciliationService.auto_match

    def flaky_auto_match(self, entity_type, tenant_id):
        if entity_type == "contract":
            raise TransactionFailure("Auto-match", entity_type)
        return original(self, entity_type, tenant_id)

    monkeypatch.setattr(ReconciliationService, "auto_match", flaky_auto_match)
    monkeypatch.setitem(app.config, "RECON_SCHEDULED_ENTITY_TYPES", ("contract", "work_order"))

    result = celery_app.tasks["reconciliation.auto_match"].apply(kwargs={"tenant_id": tenant.id}).get()

    assert result["status"] == "failed"
    assert result["results"]["contract"] == {
        "status": "failed",
        "error": "Auto-match for contract failed and was rolled back",
    }
    assert result["results"]["work_order"]["status"] == "ok"
