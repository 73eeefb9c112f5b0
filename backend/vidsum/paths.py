import os

from .settings import settings


def ensure_dirs() -> None:
    for rel in [
        "data",
        "logs",
    ]:
        os.makedirs(os.path.join(settings.data_dir, rel), exist_ok=True)


def db_path() -> str:
    return os.path.join(settings.data_dir, settings.db_relpath)


def log_path() -> str:
    return os.path.join(settings.data_dir, "logs", "backend.log")
