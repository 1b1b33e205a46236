"""Container entrypoint.

Writes the runtime .env, puts the SQLite file on the persistent volume
(restoring it from the Litestream replica when the volume is empty), creates
tables, then execs the given command, under ``litestream replicate`` when a
bucket is configured.

    collection-ranker-entrypoint uvicorn collection_ranker.main:app --host 0.0.0.0 --port 3000
"""
from __future__ import annotations

import asyncio
import logging
import os
import shlex
import subprocess
import sys
from typing import Dict, List, Mapping, Optional, Tuple

from . import config

logger = logging.getLogger(__name__)

SERVER_APP = "collection_ranker.main:app"
DB_FILENAME = "app.sqlite"
LITESTREAM_CONFIG = "litestream.yml"

ENV_DEFAULTS = {
    "HOST": "0.0.0.0",
    "PORT": "3000",
    "SHOPIFY_API_URL": "https://shopify.com",
    "SHOPIFY_API_VERSION": config.DEFAULT_API_VERSION,
    "ENV": "production",
    "SCOPES": config.DEFAULT_SCOPES,
}
ENV_FILE_KEYS = [
    "HOST",
    "PORT",
    "SHOPIFY_API_URL",
    "SHOPIFY_API_VERSION",
    "SHOPIFY_API_KEY",
    "SHOPIFY_API_SECRET",
    "SHOPIFY_APP_URL",
    "DATABASE_URL",
    "ENV",
    "SCOPES",
]


class CommandFailed(RuntimeError):
    def __init__(self, command: List[str], returncode: int):
        super().__init__(f"{shlex.join(command)} failed rc={returncode}")
        self.command = command
        self.returncode = returncode


def runtime_env(environ: Mapping[str, str], app_dir: str) -> Dict[str, str]:
    env = dict(environ)
    for key, default in ENV_DEFAULTS.items():
        if not (env.get(key) or "").strip():
            env[key] = default
    if not (env.get("DATABASE_URL") or "").strip():
        env["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(app_dir, 'data', DB_FILENAME)}"
    return env


def write_env_file(app_dir: str, env: Mapping[str, str]) -> str:
    path = os.path.join(app_dir, ".env")
    lines = [f"{key}={env.get(key, '')}" for key in ENV_FILE_KEYS]
    with open(path, "w", encoding="utf-8") as fh:
        fh.write("\n".join(lines))
    logger.info("Created %s with environment variables", path)
    return path


def is_server_command(argv: List[str]) -> bool:
    return any(arg == SERVER_APP for arg in argv)


def run(command: List[str], env: Optional[Mapping[str, str]] = None) -> None:
    logger.info("Executing command: %s", shlex.join(command))
    proc = subprocess.run(command, env=dict(env) if env is not None else None)
    logger.info('Command "%s" exited with code %s', shlex.join(command), proc.returncode)
    if proc.returncode != 0:
        raise CommandFailed(command, proc.returncode)


def link_database(app_dir: str, data_dir: str) -> str:
    """Replace <app_dir>/data/app.sqlite with a symlink into the data volume; return the volume path."""
    if not os.path.isdir(data_dir):
        logger.error("Volume %s does not exist", data_dir)
        raise RuntimeError(f"{data_dir} volume missing")

    target = os.path.join(data_dir, DB_FILENAME)
    source = os.path.join(app_dir, "data", DB_FILENAME)
    os.makedirs(os.path.dirname(source), exist_ok=True)
    if os.path.lexists(source):
        os.unlink(source)
        logger.info("Removed existing file or symlink at %s", source)
    os.symlink(target, source)
    logger.info("Symlink created: %s -> %s", source, target)
    return target


def restore_database(target: str, env: Mapping[str, str]) -> None:
    if os.path.exists(target) or not (env.get("BUCKET_NAME") or "").strip():
        return
    logger.info("Running litestream restore")
    try:
        run(["litestream", "restore", "-config", LITESTREAM_CONFIG, "-if-replica-exists", target], env)
        logger.info("Litestream restore completed")
    except (CommandFailed, OSError) as e:
        logger.warning("Litestream restore failed, creating empty database: %s", e)


def ensure_database_file(target: str) -> None:
    if not os.path.exists(target):
        logger.info("Creating empty database at %s", target)
        open(target, "w").close()


def migrate(env: Mapping[str, str]) -> None:
    # db reads DATABASE_URL at import time
    os.environ["DATABASE_URL"] = env["DATABASE_URL"]
    from .db import init_db

    logger.info("Creating database tables")
    asyncio.run(init_db())
    logger.info("Database tables ready")


def exec_argv(command: List[str], env: Mapping[str, str]) -> List[str]:
    if (env.get("BUCKET_NAME") or "").strip():
        logger.info("Running litestream replicate")
        return ["litestream", "replicate", "-config", LITESTREAM_CONFIG, "-exec", shlex.join(command)]
    logger.info("Running command without litestream")
    return list(command)


def bootstrap(command: List[str], environ: Mapping[str, str]) -> Tuple[List[str], Dict[str, str]]:
    """Prepare config and database; return the argv to exec and its environment."""
    app_dir = (environ.get("APP_DIR") or "/app").strip()
    data_dir = (environ.get("DATA_DIR") or "/data").strip()
    env = runtime_env(environ, app_dir)
    write_env_file(app_dir, env)

    if is_server_command(command):
        target = link_database(app_dir, data_dir)
        restore_database(target, env)
        ensure_database_file(target)
        migrate(env)
    return exec_argv(command, env), env


def main(argv: Optional[List[str]] = None) -> None:
    config.configure_logging()
    command = list(sys.argv[1:] if argv is None else argv)
    if not command:
        print("usage: collection-ranker-entrypoint <command> [args...]", file=sys.stderr)
        raise SystemExit(2)
    final, env = bootstrap(command, os.environ)
    logger.info("Executing command: %s", shlex.join(final))
    os.execvpe(final[0], final, env)


if __name__ == "__main__":
    main()
