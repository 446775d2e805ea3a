import json
import logging

import pytest
from flask import Flask
from prometheus_client import REGISTRY

from recon_app.reconciliation import BatchMeta, ConflictError
from recon_app.utils.logging_config import JSONFormatter, setup_logging


def _sample(name, **labels):
    return REGISTRY.get_sample_value(name, labels) or 0.0


def test_json_formatter_includes_extra_fields():
    formatter = JSONFormatter("Vista Reconciliation", "1.2.3")
    record = logging.LogRecord("recon_app.test", logging.INFO, __file__, 10, "Imported %s rows", (3,), None)
    record.batch_id = 7

    payload = json.loads(formatter.format(record))

    assert payload["message"] == "Imported 3 rows"
    assert payload["level"] == "INFO"
    assert payload["app"] == "Vista Reconciliation"
    assert payload["version"] == "1.2.3"
    assert payload["batch_id"] == 7


def test_setup_logging_writes_rotating_file(tmp_path):
    app = Flask(__name__)
    app.config.update(
        LOG_LEVEL="INFO",
        LOG_FORMAT="json",
        LOG_DIR=str(tmp_path),
        ENABLE_FILE_LOGGING=True,
        ENABLE_CONSOLE_LOGGING=False,
    )

    setup_logging(app)
    logging.getLogger("recon_app.reconciliation").info("matched", extra={"entity_type": "vendor"})
    for handler in logging.getLogger("recon_app").handlers:
        handler.flush()

    lines = (tmp_path / "recon.log").read_text(encoding="utf-8").splitlines()
    assert json.loads(lines[-1])["entity_type"] == "vendor"

    app.config.update(ENABLE_FILE_LOGGING=False)
    setup_logging(app)
    assert logging.getLogger("recon_app").handlers == []
    assert logging.getLogger("recon_app").propagate is True


def test_import_and_conflict_metrics_are_recorded(service, tenant, user, make_project):
    project = make_project()
    new_before = _sample("recon_import_rows_total", entity_type="contract", outcome="new")
    conflicts_before = _sample("recon_link_conflicts_total", entity_type="contract")

    service.import_rows(
        "contract",
        [{"contract_number": "C-1"}, {"contract_number": "C-2"}],
        BatchMeta(tenant_id=tenant.id, file_name="contracts.csv"),
    )
    first, second = service.list_records("contract", tenant.id)
    service.link("contract", first.id, project.id, tenant.id, user.id)
    with pytest.raises(ConflictError):
        service.link("contract", second.id, project.id, tenant.id, user.id)

    assert _sample("recon_import_rows_total", entity_type="contract", outcome="new") == new_before + 2
    assert _sample("recon_link_conflicts_total", entity_type="contract") == conflicts_before + 1
