import logging
import os

import uvicorn

from vidsum.main import app
from vidsum.paths import ensure_dirs, log_path
from vidsum.settings import settings


def _get_env_int(keys: list[str], default: int) -> int:
    for k in keys:
        v = str(os.getenv(k, "") or "").strip()
        if not v:
            continue
        try:
            return int(v)
        except ValueError:
            continue
    return int(default)


def _setup_logging() -> None:
    ensure_dirs()
    level = getattr(logging, str(settings.log_level).upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.FileHandler(log_path(), encoding="utf-8"),
            logging.StreamHandler(),
        ],
    )


def main() -> None:
    _setup_logging()
    host = str(os.getenv("VIDSUM_HOST", "127.0.0.1") or "127.0.0.1")
    port = _get_env_int(
        [
            "VIDSUM_PORT",
            "PORT",
        ],
        8001,
    )
    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    main()
