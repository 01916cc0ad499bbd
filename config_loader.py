"""Configuration loader for CCR Sync."""

import logging
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml

from grid.input_parsing import SINGLE_DOT_POLICIES
from runtime.defaults import (
    DEFAULT_AGGREGATE_DEBOUNCE_S,
    DEFAULT_BACKGROUND_WORKERS,
    DEFAULT_BULK_BATCH_DELAY_S,
    DEFAULT_BULK_BATCH_SIZE,
    DEFAULT_CAPACITY_MATERIALITY,
    DEFAULT_COLLECTIONS,
    DEFAULT_PERIODIC_REFRESH_S,
    DEFAULT_RECORD_STORE_BASE_URL,
    DEFAULT_REFRESH_DEBOUNCE_S,
    DEFAULT_REQUEST_TIMEOUT_S,
    DEFAULT_SINGLE_DOT_POLICY,
    DEFAULT_STORE_RETRIES,
    DEFAULT_STORE_RETRY_DELAY_S,
    DEFAULT_TIMEZONE_NAME,
)
from runtime.parsing import parse_bool
from time_utils import normalize_record_date

STORE_TRANSPORTS = {"remote", "memory"}
DEFAULT_STORE_TRANSPORT = "remote"
DEFAULT_SYNC_POLL_INTERVAL_S = 1.0


def _parse_bool(value, default):
    return parse_bool(value, default)


def _parse_float(value, default, key_name, min_value=None):
    try:
        result = float(value)
        if min_value is not None and result < min_value:
            raise ValueError("below minimum")
        return result
    except (TypeError, ValueError):
        logging.warning("Invalid %s='%s'. Using default %s.", key_name, value, default)
        return default


def _parse_int(value, default, key_name, min_value=None):
    try:
        result = int(value)
        if min_value is not None and result < min_value:
            raise ValueError("below minimum")
        return result
    except (TypeError, ValueError):
        logging.warning("Invalid %s='%s'. Using default %s.", key_name, value, default)
        return default


def _parse_timezone(timezone_name):
    try:
        ZoneInfo(timezone_name)
        return timezone_name
    except (ZoneInfoNotFoundError, TypeError, ValueError):
        logging.warning(
            "Invalid time.timezone='%s'. Using default '%s'.",
            timezone_name,
            DEFAULT_TIMEZONE_NAME,
        )
        return DEFAULT_TIMEZONE_NAME


def _parse_choice(value, allowed_values, default, key_name):
    if value is None:
        return default
    normalized = str(value).strip().lower()
    if normalized not in allowed_values:
        allowed_text = ", ".join(sorted(allowed_values))
        logging.warning(
            "Invalid %s='%s'. Using default '%s'. Allowed values: %s.",
            key_name,
            value,
            default,
            allowed_text,
        )
        return default
    return normalized


def _parse_optional_text(value):
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _parse_base_url(value, key_name):
    if value is None:
        return DEFAULT_RECORD_STORE_BASE_URL
    text = str(value).strip().rstrip("/")
    if not text.startswith(("http://", "https://")):
        raise ValueError(f"Invalid {key_name}='{value}'. Expected an http(s) URL.")
    return text


def _parse_session_date(value):
    if value is None or str(value).strip() == "":
        return None
    try:
        return normalize_record_date(value)
    except ValueError as exc:
        raise ValueError(f"Invalid session.date='{value}'. Expected YYYY-MM-DD or DD/MM/YYYY.") from exc


def _normalize_collections(raw_collections):
    collections = dict(DEFAULT_COLLECTIONS)
    if raw_collections is None:
        return collections
    if not isinstance(raw_collections, dict):
        logging.warning("Invalid collections section. Using default collection names.")
        return collections
    for key, value in raw_collections.items():
        if key not in DEFAULT_COLLECTIONS:
            logging.warning("Unknown collections.%s ignored.", key)
            continue
        name = _parse_optional_text(value)
        if name is None:
            logging.warning("Invalid collections.%s='%s'. Using default '%s'.", key, value, DEFAULT_COLLECTIONS[key])
            continue
        collections[key] = name
    return collections


def load_config(config_path="config.yaml"):
    """Load configuration from YAML and return validated runtime dict."""
    config_file = Path(config_path)
    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_file, "r", encoding="utf-8") as handle:
        yaml_config = yaml.safe_load(handle) or {}

    config = {}

    general = yaml_config.get("general", {})
    log_level_str = str(general.get("log_level", "INFO")).upper()
    config["LOG_LEVEL"] = getattr(logging, log_level_str, logging.INFO)

    time_cfg = yaml_config.get("time", {})
    config["TIMEZONE_NAME"] = _parse_timezone(time_cfg.get("timezone", DEFAULT_TIMEZONE_NAME))

    store_cfg = yaml_config.get("record_store", {})
    config["STORE_TRANSPORT"] = _parse_choice(
        store_cfg.get("transport", DEFAULT_STORE_TRANSPORT),
        STORE_TRANSPORTS,
        DEFAULT_STORE_TRANSPORT,
        "record_store.transport",
    )
    config["STORE_BASE_URL"] = _parse_base_url(store_cfg.get("base_url"), "record_store.base_url")
    config["STORE_AUTH_TOKEN"] = _parse_optional_text(store_cfg.get("auth_token"))
    config["STORE_TIMEOUT_S"] = _parse_float(
        store_cfg.get("request_timeout_s", DEFAULT_REQUEST_TIMEOUT_S),
        DEFAULT_REQUEST_TIMEOUT_S,
        "record_store.request_timeout_s",
        min_value=0.1,
    )
    config["STORE_RETRIES"] = _parse_int(
        store_cfg.get("retries", DEFAULT_STORE_RETRIES),
        DEFAULT_STORE_RETRIES,
        "record_store.retries",
        min_value=0,
    )
    config["STORE_RETRY_DELAY_S"] = _parse_float(
        store_cfg.get("retry_delay_s", DEFAULT_STORE_RETRY_DELAY_S),
        DEFAULT_STORE_RETRY_DELAY_S,
        "record_store.retry_delay_s",
        min_value=0.0,
    )

    config["COLLECTIONS"] = _normalize_collections(yaml_config.get("collections"))

    sync_cfg = yaml_config.get("sync", {})
    config["AGGREGATE_DEBOUNCE_S"] = _parse_float(
        sync_cfg.get("aggregate_debounce_s", DEFAULT_AGGREGATE_DEBOUNCE_S),
        DEFAULT_AGGREGATE_DEBOUNCE_S,
        "sync.aggregate_debounce_s",
        min_value=0.0,
    )
    config["REFRESH_DEBOUNCE_S"] = _parse_float(
        sync_cfg.get("refresh_debounce_s", DEFAULT_REFRESH_DEBOUNCE_S),
        DEFAULT_REFRESH_DEBOUNCE_S,
        "sync.refresh_debounce_s",
        min_value=0.0,
    )
    config["PERIODIC_REFRESH_S"] = _parse_float(
        sync_cfg.get("periodic_refresh_s", DEFAULT_PERIODIC_REFRESH_S),
        DEFAULT_PERIODIC_REFRESH_S,
        "sync.periodic_refresh_s",
        min_value=0.0,
    )
    config["SYNC_POLL_INTERVAL_S"] = _parse_float(
        sync_cfg.get("poll_interval_s", DEFAULT_SYNC_POLL_INTERVAL_S),
        DEFAULT_SYNC_POLL_INTERVAL_S,
        "sync.poll_interval_s",
        min_value=0.1,
    )
    config["BULK_BATCH_SIZE"] = _parse_int(
        sync_cfg.get("bulk_batch_size", DEFAULT_BULK_BATCH_SIZE),
        DEFAULT_BULK_BATCH_SIZE,
        "sync.bulk_batch_size",
        min_value=1,
    )
    config["BULK_BATCH_DELAY_S"] = _parse_float(
        sync_cfg.get("bulk_batch_delay_s", DEFAULT_BULK_BATCH_DELAY_S),
        DEFAULT_BULK_BATCH_DELAY_S,
        "sync.bulk_batch_delay_s",
        min_value=0.0,
    )
    config["BACKGROUND_WORKERS"] = _parse_int(
        sync_cfg.get("background_workers", DEFAULT_BACKGROUND_WORKERS),
        DEFAULT_BACKGROUND_WORKERS,
        "sync.background_workers",
        min_value=1,
    )
    config["SUBSCRIBE_TO_CHANGES"] = _parse_bool(sync_cfg.get("subscribe_to_changes", True), True)

    input_cfg = yaml_config.get("input", {})
    config["SINGLE_DOT_POLICY"] = _parse_choice(
        input_cfg.get("single_dot_policy", DEFAULT_SINGLE_DOT_POLICY),
        SINGLE_DOT_POLICIES,
        DEFAULT_SINGLE_DOT_POLICY,
        "input.single_dot_policy",
    )

    capacity_cfg = yaml_config.get("capacity", {})
    config["CAPACITY_MATERIALITY"] = _parse_float(
        capacity_cfg.get("materiality_threshold", DEFAULT_CAPACITY_MATERIALITY),
        DEFAULT_CAPACITY_MATERIALITY,
        "capacity.materiality_threshold",
        min_value=0.0,
    )

    session_cfg = yaml_config.get("session", {})
    config["SESSION_PLANT_UNIT"] = _parse_optional_text(session_cfg.get("plant_unit"))
    config["SESSION_PLANT_CATEGORY"] = _parse_optional_text(session_cfg.get("plant_category"))
    config["SESSION_DATE"] = _parse_session_date(session_cfg.get("date"))

    return config
