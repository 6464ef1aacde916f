"""
Logging setup shared by the plume drivers.

Console verbosity comes from the CLI flag unless PLUME_LOG_LEVEL (a level name
or number) or PLUME_DEBUG overrides it. Under MPI only rank 0 logs INFO to the
console; every rank can still write its own file log in the run directory.
"""

from __future__ import annotations

import logging
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Union

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
ENV_LEVEL = "PLUME_LOG_LEVEL"
ENV_DEBUG = "PLUME_DEBUG"

LevelLike = Union[str, int, None]


def resolve_level(value: LevelLike, default: int = logging.INFO) -> int:
    """Level number from an int, a digit string or a level name; default when unknown."""
    if value is None:
        return default
    if isinstance(value, int):
        return value
    text = str(value).strip().upper()
    if text.isdigit():
        return int(text)
    resolved = logging.getLevelName(text) if text else None
    return resolved if isinstance(resolved, int) else default


def get_log_level_from_env(default: LevelLike = "INFO") -> int:
    level = resolve_level(default)
    env_level = os.environ.get(ENV_LEVEL, "").strip()
    if env_level:
        return resolve_level(env_level, level)
    if os.environ.get(ENV_DEBUG, "").strip().lower() in {"1", "true", "yes", "on"}:
        return logging.DEBUG
    return level


def get_mpi_rank_size() -> tuple[int, int]:
    """(rank, size) of COMM_WORLD; (0, 1) when mpi4py is not installed."""
    try:
        from mpi4py import MPI
    except ImportError:
        return 0, 1
    comm = MPI.COMM_WORLD
    return int(comm.Get_rank()), int(comm.Get_size())


def is_root_rank() -> bool:
    return get_mpi_rank_size()[0] == 0


def setup_logging(rank: int, *, level: int, quiet_nonroot: bool = True) -> None:
    """Configure the root logger once; console handlers on non-root ranks show warnings only."""
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=level, format=LOG_FORMAT)
    root.setLevel(level)

    console_level = max(level, logging.WARNING) if quiet_nonroot and rank != 0 else level
    for handler in root.handlers:
        if not isinstance(handler, logging.FileHandler):
            handler.setLevel(console_level)


@contextmanager
def run_log(run_dir: Union[str, Path], *, level: int, name: str = "run.log") -> Iterator[logging.Handler]:
    """Mirror all records into ``run_dir/name`` for the duration of the block."""
    handler = logging.FileHandler(Path(run_dir) / name, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root = logging.getLogger()
    root.addHandler(handler)
    try:
        yield handler
    finally:
        root.removeHandler(handler)
        handler.close()
