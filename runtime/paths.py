"""Repo-root-relative path helpers for runtime modules."""

import os


def _as_directory(path_like=None):
    if path_like is None:
        return os.path.dirname(os.path.abspath(__file__))
    path = os.path.abspath(str(path_like))
    if os.path.isfile(path):
        return os.path.dirname(path)
    return path


def _looks_like_project_root(path):
    if not os.path.isdir(path):
        return False
    return (
        os.path.isfile(os.path.join(path, "ccr_sync.py"))
        or os.path.isfile(os.path.join(path, "pyproject.toml"))
        or os.path.isdir(os.path.join(path, ".git"))
    )


def get_project_root(anchor_path=None):
    """
    Return the repository root.

    `anchor_path` may be a file path or directory path. The resolver walks upward
    looking for the directory holding the director module or packaging file.
    """
    candidate = _as_directory(anchor_path)
    while True:
        if _looks_like_project_root(candidate):
            return candidate
        parent = os.path.dirname(candidate)
        if parent == candidate:
            break
        candidate = parent
    return os.path.dirname(_as_directory(__file__))


def get_logs_dir(anchor_path=None):
    return os.path.join(get_project_root(anchor_path), "logs")


def get_config_path(anchor_path=None, filename="config.yaml"):
    """Path of the YAML config next to the director module."""
    return os.path.join(get_project_root(anchor_path), filename)


def get_log_file_path(logs_dir, date_str):
    """Daily log file for `date_str` (YYYY-MM-DD) inside `logs_dir`."""
    return os.path.join(logs_dir, f"{date_str}_ccr_sync.log")
