# config.py
import os


def _coerce_bool(value, default=False):
    """Convert environment-style truthy/falsey values to bool."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    value_str = str(value).strip().lower()
    if value_str in {"1", "true", "yes", "on"}:
        return True
    if value_str in {"0", "false", "no", "off"}:
        return False
    return default


def _coerce_float(value, default, *, minimum=0.0, maximum=1.0):
    """
    Parse a float setting, falling back to ``default`` when missing or out of bounds.
    """
    if value is None or str(value).strip() == "":
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if number < minimum or number > maximum:
        return default
    return number


def _parse_entity_list(value, default):
    """
    Parse a comma-separated entity type list while keeping order and removing duplicates.

    Returns:
        tuple[str, ...]: Normalized entity type identifiers.
    """
    if not value:
        return default

    seen = set()
    entities = []
    for raw_item in value.split(","):
        item = raw_item.strip().lower()
        if not item or item in seen:
            continue
        seen.add(item)
        entities.append(item)
    return tuple(entities) or default


def _parse_id_list(value):
    """Parse a comma-separated list of positive integer ids, skipping anything else."""
    if not value:
        return ()
    ids = []
    for raw_item in value.split(","):
        item = raw_item.strip()
        if item.isdigit() and int(item) > 0 and int(item) not in ids:
            ids.append(int(item))
    return tuple(ids)


class Config:
    # SECRET_KEY must be set via environment variable for security
    _flask_env = os.environ.get("FLASK_ENV", "development")
    _is_testing = _flask_env == "testing"
    _is_production = _flask_env == "production"

    SECRET_KEY = os.environ.get("SECRET_KEY")

    # Only require SECRET_KEY in production mode
    if not SECRET_KEY and _is_production:
        raise ValueError(
            "SECRET_KEY environment variable is required in production. "
            'Generate with: python -c "import secrets; print(secrets.token_hex(32))"'
        )

    if not SECRET_KEY and not _is_testing:
        import warnings

        warnings.warn(
            "SECRET_KEY not set. Using default for development only. "
            "Set SECRET_KEY environment variable before deploying.",
            UserWarning,
        )
        SECRET_KEY = "dev-secret-key-change-in-production"

    if not SECRET_KEY:
        SECRET_KEY = "test-secret-key-placeholder"

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {}

    # Reconciliation configuration
    RECON_ENABLED = _coerce_bool(os.environ.get("RECON_ENABLED"), default=True)
    RECON_MATCHING_PROFILE_PATH = os.environ.get("RECON_MATCHING_PROFILE_PATH")
    # None leaves the matching profile value in place
    RECON_DEFAULT_MIN_SIMILARITY = _coerce_float(os.environ.get("RECON_DEFAULT_MIN_SIMILARITY"), None)
    RECON_PLACEHOLDER_EMAIL_DOMAIN = os.environ.get("RECON_PLACEHOLDER_EMAIL_DOMAIN", "vista.imported")
    try:
        RECON_HISTORY_LIMIT = max(1, int(os.environ.get("RECON_HISTORY_LIMIT", "20")))
    except ValueError:
        RECON_HISTORY_LIMIT = 20
    RECON_SCHEDULED_ENTITY_TYPES = _parse_entity_list(
        os.environ.get("RECON_SCHEDULED_ENTITY_TYPES"),
        ("contract", "work_order", "employee"),
    )
    RECON_SCHEDULED_TENANTS = _parse_id_list(os.environ.get("RECON_SCHEDULED_TENANTS"))
    try:
        RECON_AUTO_MATCH_INTERVAL = max(60, int(os.environ.get("RECON_AUTO_MATCH_INTERVAL", "3600")))
    except ValueError:
        RECON_AUTO_MATCH_INTERVAL = 3600

    # Worker configuration
    RECON_WORKER_ENABLED = _coerce_bool(os.environ.get("RECON_WORKER_ENABLED"), default=False)
    CELERY_BROKER_URL = os.environ.get("CELERY_BROKER_URL")
    CELERY_RESULT_BACKEND = os.environ.get("CELERY_RESULT_BACKEND")
    CELERY_SQLITE_PATH = os.environ.get("CELERY_SQLITE_PATH")
    CELERY_CONFIG = os.environ.get("CELERY_CONFIG")


class DevelopmentConfig(Config):
    DEBUG = True
    _config_dir = os.path.dirname(os.path.abspath(__file__))
    _project_root = os.path.dirname(_config_dir)
    instance_path = os.path.join(_project_root, "instance")

    if not os.path.exists(instance_path):
        os.makedirs(instance_path, exist_ok=True)

    # SQLite URIs need forward slashes on Windows
    db_path = os.path.join(instance_path, "recon_dev.db").replace("\\", "/")
    db_uri = f"sqlite:///{db_path}"

    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL", db_uri)
    SQLALCHEMY_ECHO = _coerce_bool(os.environ.get("SQLALCHEMY_ECHO"), default=False)
    if SQLALCHEMY_DATABASE_URI.startswith("sqlite"):
        SQLALCHEMY_ENGINE_OPTIONS = {
            "connect_args": {
                "check_same_thread": False,
                "timeout": 5,
            }
        }
    else:
        SQLALCHEMY_ENGINE_OPTIONS = {}


class TestingConfig(Config):
    TESTING = True
    SECRET_KEY = os.environ.get("SECRET_KEY", "test-secret-key-for-testing-only")
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_ECHO = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "connect_args": {
            "check_same_thread": False,
            "timeout": 5,
        }
    }
    RECON_WORKER_ENABLED = False


class ProductionConfig(Config):
    DEBUG = False
    uri = os.environ.get("DATABASE_URL")
    if uri and uri.startswith("postgres://"):
        uri = uri.replace("postgres://", "postgresql://", 1)
    SQLALCHEMY_DATABASE_URI = uri
    SQLALCHEMY_ECHO = False
