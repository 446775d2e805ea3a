from config.base import _coerce_bool, _coerce_float, _parse_entity_list, _parse_id_list
from config.validation import validate_environment


def _production_env(monkeypatch, **values):
    for name in ("SECRET_KEY", "DATABASE_URL", "RECON_MATCHING_PROFILE_PATH", "RECON_WORKER_ENABLED", "CELERY_BROKER_URL"):
        monkeypatch.delenv(name, raising=False)
    for name, value in values.items():
        monkeypatch.setenv(name, value)


def test_coerce_helpers_fall_back_to_defaults():
    assert _coerce_bool("Yes") is True
    assert _coerce_bool("off", default=True) is False
    assert _coerce_bool("maybe", default=True) is True
    assert _coerce_float("0.65", 0.5) == 0.65
    assert _coerce_float("1.5", 0.5) == 0.5
    assert _coerce_float("abc", 0.5) == 0.5
    assert _coerce_float(None, None) is None


def test_entity_list_is_normalized_and_deduplicated():
    assert _parse_entity_list(" Contract,employee,contract,, ", ("vendor",)) == ("contract", "employee")
    assert _parse_entity_list("", ("vendor",)) == ("vendor",)


def test_scheduled_tenant_ids_skip_invalid_entries():
    assert _parse_id_list("3, 7,x,0,3,-2") == (3, 7)
    assert _parse_id_list(None) == ()


def test_validation_skipped_outside_production(monkeypatch):
    _production_env(monkeypatch)

    assert validate_environment("development") == (True, [])


def test_production_requires_secret_and_database(monkeypatch):
    _production_env(monkeypatch, SECRET_KEY="your-secret-key")

    is_valid, errors = validate_environment("production")

    assert is_valid is False
    assert any("SECRET_KEY" in error for error in errors)
    assert any("DATABASE_URL" in error for error in errors)


def test_production_checks_profile_and_worker_broker(monkeypatch, tmp_path):
    _production_env(
        monkeypatch,
        SECRET_KEY="a" * 64,
        DATABASE_URL="postgresql://recon@db/recon",
        RECON_MATCHING_PROFILE_PATH=str(tmp_path / "missing.yaml"),
        RECON_WORKER_ENABLED="true",
    )

    is_valid, errors = validate_environment("production")

    assert is_valid is False
    assert len(errors) == 2
    assert "RECON_MATCHING_PROFILE_PATH" in errors[0]
    assert "CELERY_BROKER_URL" in errors[1]

    monkeypatch.setenv("CELERY_BROKER_URL", "redis://localhost:6379/0")
    profile = tmp_path / "profile.yaml"
    profile.write_text("max_candidates: 3\n", encoding="utf-8")
    monkeypatch.setenv("RECON_MATCHING_PROFILE_PATH", str(profile))

    assert validate_environment("production") == (True, [])
