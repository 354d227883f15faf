"""Configuration handling for invoice-guard.

Settings live in a ``config.ini`` file with two sections: ``[Store]`` picks
and configures the store backend, ``[Policy]`` carries the business
thresholds the guards enforce.
"""

from __future__ import annotations

import configparser
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Optional

from .constants import LARGE_ADJUSTMENT_PERCENT, MINIMUM_INVOICE_AMOUNT


CONFIG_FILE_NAME = "config.ini"
BACKEND_HTTP = "http"
BACKEND_WORKBOOK = "workbook"
SUPPORTED_BACKENDS = (BACKEND_HTTP, BACKEND_WORKBOOK)


@dataclass(frozen=True)
class Policy:
    """Business thresholds applied by the save guard."""

    minimum_invoice_amount: Decimal = MINIMUM_INVOICE_AMOUNT
    large_adjustment_percent: Decimal = LARGE_ADJUSTMENT_PERCENT


@dataclass(frozen=True)
class StoreSettings:
    """Typed representation of the ``[Store]`` section."""

    backend: str
    base_url: str = "http://localhost:8080"
    timeout: float = 10.0
    data_file: Optional[Path] = None
    token: Optional[str] = None


@dataclass(frozen=True)
class Settings:
    """Everything read from ``config.ini``."""

    store: StoreSettings
    policy: Policy = field(default_factory=Policy)


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate ``config.ini``.

    An explicit path is returned as-is. Otherwise the search walks up from the
    current working directory and returns the first ``config.ini`` found.

    Args:
        explicit_path (Path | None): Caller supplied location.

    Returns:
        Path: Location of the configuration file.

    Raises:
        FileNotFoundError: If no parent directory holds ``config.ini``.
    """
    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for directory in (current, *current.parents):
        candidate = directory / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config_path`` into a :class:`configparser.ConfigParser`.

    Raises:
        FileNotFoundError: If the file does not exist after ``~`` expansion.
    """
    config_path = Path(config_path).expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path)
    return parser


def _decimal_option(parser: configparser.ConfigParser, section: str, option: str, default: Decimal) -> Decimal:
    raw = parser.get(section, option, fallback=None)
    if raw is None or not raw.strip():
        return default
    try:
        return Decimal(raw.strip())
    except InvalidOperation as exc:
        raise ValueError(f"Invalid decimal for [{section}] {option}: {raw!r}") from exc


def parse_policy(parser: configparser.ConfigParser) -> Policy:
    """Read the optional ``[Policy]`` section, falling back to defaults."""
    return Policy(
        minimum_invoice_amount=_decimal_option(
            parser, "Policy", "MinimumInvoiceAmount", MINIMUM_INVOICE_AMOUNT
        ),
        large_adjustment_percent=_decimal_option(
            parser, "Policy", "LargeAdjustmentPercent", LARGE_ADJUSTMENT_PERCENT
        ),
    )


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> Settings:
    """Convert a parsed configuration into :class:`Settings`.

    ``Backend`` is mandatory. The workbook backend also requires
    ``DataFile``; relative paths are anchored to ``base_path`` (or the
    current working directory) and resolved.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory relative ``DataFile`` entries are
            resolved against.

    Returns:
        Settings: Immutable settings for the store and the policy.

    Raises:
        KeyError: If a required section or option is missing.
        ValueError: If ``Backend`` names an unsupported store or a numeric
            option cannot be parsed.
    """
    try:
        backend = parser.get("Store", "Backend").strip().lower()
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    if backend not in SUPPORTED_BACKENDS:
        raise ValueError(f"Unsupported store backend: {backend}")

    data_file: Optional[Path] = None
    data_file_raw = parser.get("Store", "DataFile", fallback="").strip()
    if backend == BACKEND_WORKBOOK and not data_file_raw:
        raise KeyError("Missing required configuration entry: [Store] DataFile")
    if data_file_raw:
        data_file = Path(data_file_raw)
        if not data_file.is_absolute():
            if base_path is None:
                base_path = Path.cwd()
            data_file = (base_path / data_file).resolve()

    try:
        timeout = float(parser.get("Store", "Timeout", fallback="10"))
    except ValueError as exc:
        raise ValueError(f"Invalid timeout in [Store]: {exc}") from exc

    token = parser.get("Store", "Token", fallback="").strip() or None

    store = StoreSettings(
        backend=backend,
        base_url=parser.get("Store", "BaseUrl", fallback="http://localhost:8080").rstrip("/"),
        timeout=timeout,
        data_file=data_file,
        token=token,
    )
    return Settings(store=store, policy=parse_policy(parser))


def load_settings(config_path: Optional[Path] = None) -> Settings:
    """Find, read and parse the configuration in one call."""
    located = Path(find_config_file(config_path)).expanduser().resolve()
    parser = read_config(located)
    return parse_settings(parser, base_path=located.parent)


__all__ = [
    "CONFIG_FILE_NAME",
    "BACKEND_HTTP",
    "BACKEND_WORKBOOK",
    "Policy",
    "StoreSettings",
    "Settings",
    "find_config_file",
    "read_config",
    "parse_policy",
    "parse_settings",
    "load_settings",
]
