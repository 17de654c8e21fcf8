# mediaguard/config.py
import os


class BaseConfig:
    CELERY_BROKER_URL = os.environ.get("CELERY_BROKER_URL", "redis://redis:6379/0")
    CELERY_RESULT_BACKEND = os.environ.get("CELERY_RESULT_BACKEND", "redis://redis:6379/0")

    # --- DB ---
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", "postgresql+psycopg2://app_user:app_pass@db:5432/app_db"
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    JSON_SORT_KEYS = False

    # --- Analysis ---
    JOB_STORE = os.environ.get("JOB_STORE", "sql")                    # sql|memory
    ANALYSIS_DISPATCH = os.environ.get("ANALYSIS_DISPATCH", "celery")  # celery|thread|inline
    ANALYSIS_MAX_WORKERS = int(os.environ.get("ANALYSIS_MAX_WORKERS", "4"))
    PERSIST_MAX_RETRIES = int(os.environ.get("PERSIST_MAX_RETRIES", "3"))
    PERSIST_BACKOFF_SECONDS = float(os.environ.get("PERSIST_BACKOFF_SECONDS", "0.5"))
    PERSIST_MAX_BACKOFF_SECONDS = float(os.environ.get("PERSIST_MAX_BACKOFF_SECONDS", "5"))
    JOB_TIMEOUT_SECONDS = int(os.environ.get("JOB_TIMEOUT_SECONDS", "600"))
    STATS_PAGE_SIZE = int(os.environ.get("STATS_PAGE_SIZE", "500"))      # jobs per page when scanning for /stats

    # --- Detection units ---
    MODEL_REGISTRY_PATH = os.environ.get("MODEL_REGISTRY_PATH")
    DETECTION_LATENCY_SCALE = float(os.environ.get("DETECTION_LATENCY_SCALE", "1.0"))
    DETECTION_SEED = os.environ.get("DETECTION_SEED")
    REMOTE_DETECTION_TIMEOUT = float(os.environ.get("REMOTE_DETECTION_TIMEOUT", "20"))


class DevelopmentConfig(BaseConfig):
    DEBUG = True
    ENV = "development"


class ProductionConfig(BaseConfig):
    DEBUG = False
    ENV = "production"


class TestingConfig(BaseConfig):
    TESTING = True
    ENV = "testing"
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    JOB_STORE = "sql"
    ANALYSIS_DISPATCH = "inline"
    DETECTION_LATENCY_SCALE = 0.0
    DETECTION_SEED = 7
    MODEL_REGISTRY_PATH = None
    PERSIST_BACKOFF_SECONDS = 0.0
