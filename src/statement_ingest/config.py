"""Configuration loading and validation for statement ingestion."""

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import TYPE_CHECKING, Optional

import yaml

from statement_ingest.models.account import Account
from statement_ingest.models.category import Category, CategoryRule
from statement_ingest.models.export import ExportProfile
from statement_ingest.parsers.base import MAX_FILE_SIZE, MAX_ROWS
from statement_ingest.processing.ai.client import AIClientConfig
from statement_ingest.processing.fx import StaticFxRates
from statement_ingest.utils.logging_config import get_logger

if TYPE_CHECKING:
    from statement_ingest.storage.sqlite_store import SQLiteStore

logger = get_logger(__name__)


class ConfigError(Exception):
    """Exception raised for configuration errors."""

    pass


@dataclass
class DedupConfig:
    """Duplicate detection tolerances.

    Attributes:
        date_tolerance_days: Max date difference for a near duplicate.
        similarity_threshold: Min description similarity for a near duplicate.
    """

    date_tolerance_days: int = 1
    similarity_threshold: float = 0.8

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> "DedupConfig":
        """Create from dictionary."""
        config = cls(
            date_tolerance_days=int(data.get("date_tolerance_days", 1)),  # type: ignore[arg-type]
            similarity_threshold=float(data.get("similarity_threshold", 0.8)),  # type: ignore[arg-type]
        )
        if config.date_tolerance_days < 0:
            raise ConfigError("dedup.date_tolerance_days must be non-negative")
        if not 0.0 <= config.similarity_threshold <= 1.0:
            raise ConfigError("dedup.similarity_threshold must be between 0 and 1")
        return config


@dataclass
class ClassificationConfig:
    """Classification, reclassification and rule proposal settings.

    Attributes:
        reclassify_threshold: Rule/AI transactions below this confidence are revisited.
        history_sample_size: Past categorizations sent with each AI request.
        proposal_min_occurrences: Corrections needed before proposing a rule.
        proposal_lookback: Recent corrections scanned for proposals.
    """

    reclassify_threshold: float = 0.7
    history_sample_size: int = 20
    proposal_min_occurrences: int = 3
    proposal_lookback: int = 200

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> "ClassificationConfig":
        """Create from dictionary."""
        return cls(
            reclassify_threshold=float(data.get("reclassify_threshold", 0.7)),  # type: ignore[arg-type]
            history_sample_size=int(data.get("history_sample_size", 20)),  # type: ignore[arg-type]
            proposal_min_occurrences=int(data.get("proposal_min_occurrences", 3)),  # type: ignore[arg-type]
            proposal_lookback=int(data.get("proposal_lookback", 200)),  # type: ignore[arg-type]
        )


@dataclass
class AIConfig:
    """AI provider settings.

    Attributes:
        enabled: Whether AI extraction and categorization are used at all.
        api_key_env: Environment variable holding the API key.
        model: Model name.
        max_tokens: Response token limit.
        timeout: Per-request timeout in seconds.
        retry_attempts: Attempts per request.
        retry_delay: Initial backoff delay in seconds.
        failure_threshold: Consecutive failures that open the circuit.
        reset_after: Seconds before an open circuit allows a trial request.
        min_extraction_confidence: Extraction hints below this are not used.
    """

    enabled: bool = True
    api_key_env: str = "ANTHROPIC_API_KEY"
    model: str = AIClientConfig.model
    max_tokens: int = 300
    timeout: float = 30.0
    retry_attempts: int = 3
    retry_delay: float = 1.0
    failure_threshold: int = 3
    reset_after: float = 60.0
    min_extraction_confidence: float = 0.6

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> "AIConfig":
        """Create from dictionary."""
        defaults = cls()
        return cls(
            enabled=bool(data.get("enabled", True)),
            api_key_env=str(data.get("api_key_env", defaults.api_key_env)),
            model=str(data.get("model", defaults.model)),
            max_tokens=int(data.get("max_tokens", defaults.max_tokens)),  # type: ignore[arg-type]
            timeout=float(data.get("timeout", defaults.timeout)),  # type: ignore[arg-type]
            retry_attempts=int(data.get("retry_attempts", defaults.retry_attempts)),  # type: ignore[arg-type]
            retry_delay=float(data.get("retry_delay", defaults.retry_delay)),  # type: ignore[arg-type]
            failure_threshold=int(data.get("failure_threshold", defaults.failure_threshold)),  # type: ignore[arg-type]
            reset_after=float(data.get("reset_after", defaults.reset_after)),  # type: ignore[arg-type]
            min_extraction_confidence=float(
                data.get("min_extraction_confidence", defaults.min_extraction_confidence)  # type: ignore[arg-type]
            ),
        )

    def to_client_config(self) -> AIClientConfig:
        """Settings for the AI client."""
        return AIClientConfig(
            api_key_env=self.api_key_env,
            model=self.model,
            max_tokens=self.max_tokens,
            timeout=self.timeout,
            retry_attempts=self.retry_attempts,
            retry_delay=self.retry_delay,
            failure_threshold=self.failure_threshold,
            reset_after=self.reset_after,
        )


@dataclass
class StorageConfig:
    """Storage settings.

    Attributes:
        db_path: SQLite database file.
        timeout: Seconds to wait on a locked database.
    """

    db_path: str = "statement_ingest.db"
    timeout: float = 30.0

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> "StorageConfig":
        """Create from dictionary."""
        return cls(
            db_path=str(data.get("db_path", "statement_ingest.db")),
            timeout=float(data.get("timeout", 30.0)),  # type: ignore[arg-type]
        )


@dataclass
class IngestionConfig:
    """Upload processing limits.

    Attributes:
        max_workers: Statements processed at once.
        max_file_size: Largest accepted upload in bytes.
        max_rows: Most rows accepted from one statement.
        max_pdf_pages: Most PDF pages read from one statement.
    """

    max_workers: int = 4
    max_file_size: int = MAX_FILE_SIZE
    max_rows: int = MAX_ROWS
    max_pdf_pages: int = 500

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> "IngestionConfig":
        """Create from dictionary."""
        config = cls(
            max_workers=int(data.get("max_workers", 4)),  # type: ignore[arg-type]
            max_file_size=int(data.get("max_file_size", MAX_FILE_SIZE)),  # type: ignore[arg-type]
            max_rows=int(data.get("max_rows", MAX_ROWS)),  # type: ignore[arg-type]
            max_pdf_pages=int(data.get("max_pdf_pages", 500)),  # type: ignore[arg-type]
        )
        if config.max_workers < 1:
            raise ConfigError("ingestion.max_workers must be at least 1")
        return config


@dataclass
class FxConfig:
    """Fixed exchange rates used for converted export columns.

    Attributes:
        rates: (from, to) currency pair to rate. In YAML, ``USD/EUR: 0.92``
            means one USD buys 0.92 EUR. The inverse is derived.
    """

    rates: dict[tuple[str, str], Decimal] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> "FxConfig":
        """Create from dictionary."""
        raw = data.get("rates") or {}
        if not isinstance(raw, dict):
            raise ConfigError("fx.rates must map currency pairs like 'USD/EUR' to rates")

        rates: dict[tuple[str, str], Decimal] = {}
        for pair, value in raw.items():
            codes = str(pair).strip().upper().split("/")
            if len(codes) != 2 or not all(len(c) == 3 and c.isalpha() for c in codes):
                raise ConfigError(f"fx.rates key must look like 'USD/EUR', got {pair!r}")
            try:
                rate = Decimal(str(value))
            except InvalidOperation as e:
                raise ConfigError(f"fx.rates.{pair} is not a number: {value!r}") from e
            if not rate.is_finite() or rate <= 0:
                raise ConfigError(f"fx.rates.{pair} must be positive, got {value!r}")
            rates[(codes[0], codes[1])] = rate
        return cls(rates=rates)

    def to_provider(self) -> Optional[StaticFxRates]:
        """Rate provider for the export engine, or None when no rates are set."""
        return StaticFxRates(self.rates) if self.rates else None


@dataclass
class LoggingConfig:
    """Configuration for logging.

    Attributes:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        file: Path to log file.
    """

    level: str = "INFO"
    file: str = "statement_ingest.log"

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> "LoggingConfig":
        """Create from dictionary."""
        return cls(
            level=str(data.get("level", "INFO")),
            file=str(data.get("file", "statement_ingest.log")),
        )


@dataclass
class Config:
    """Main configuration container.

    Attributes:
        accounts: Dictionary of account ID to Account.
        categories: Dictionary of category ID to Category.
        category_rules: Rules from configuration, in evaluation order.
        export_profiles: Dictionary of profile ID to ExportProfile.
        dedup: Duplicate detection settings.
        classification: Classification settings.
        ai: AI provider settings.
        storage: Storage settings.
        ingestion: Upload processing limits.
        fx: Exchange rates for converted export columns.
        logging: Logging configuration.
    """

    accounts: dict[str, Account] = field(default_factory=dict)
    categories: dict[str, Category] = field(default_factory=dict)
    category_rules: list[CategoryRule] = field(default_factory=list)
    export_profiles: dict[str, ExportProfile] = field(default_factory=dict)
    dedup: DedupConfig = field(default_factory=DedupConfig)
    classification: ClassificationConfig = field(default_factory=ClassificationConfig)
    ai: AIConfig = field(default_factory=AIConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    ingestion: IngestionConfig = field(default_factory=IngestionConfig)
    fx: FxConfig = field(default_factory=FxConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def load_yaml_file(path: Path) -> dict[str, object]:
    """Load a YAML file.

    Args:
        path: Path to the YAML file.

    Returns:
        Parsed YAML content.

    Raises:
        FileNotFoundError: If file doesn't exist.
        ConfigError: If the file is invalid YAML or not a mapping.
    """
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    try:
        with open(path, encoding="utf-8") as f:
            content = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if content is None:
        return {}
    if not isinstance(content, dict):
        raise ConfigError(f"{path} must contain a mapping, got {type(content).__name__}")
    return content


def _section(data: dict[str, object], key: str) -> Optional[dict[str, object]]:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, dict):
        raise ConfigError(f"'{key}' must be a mapping, got {type(value).__name__}")
    return value


def _entries(data: dict[str, object], key: str) -> list[dict[str, object]]:
    """A list section, also accepting the {id: {...}} mapping form."""
    value = data.get(key)
    if value is None:
        return []
    if isinstance(value, dict):
        entries = []
        for entry_id, entry in value.items():
            entry = dict(entry or {})
            entry["id"] = entry_id
            entries.append(entry)
        return entries
    if not isinstance(value, list):
        raise ConfigError(f"'{key}' must be a list, got {type(value).__name__}")
    return value


def load_settings(path: Path, config: Config) -> None:
    """Load settings.yaml sections into a config.

    Args:
        path: Path to settings.yaml.
        config: Config to update.
    """
    data = load_yaml_file(path)

    sections = {
        "dedup": (DedupConfig, "dedup"),
        "classification": (ClassificationConfig, "classification"),
        "ai": (AIConfig, "ai"),
        "storage": (StorageConfig, "storage"),
        "ingestion": (IngestionConfig, "ingestion"),
        "fx": (FxConfig, "fx"),
        "logging": (LoggingConfig, "logging"),
    }
    for key, (section_cls, attr) in sections.items():
        section = _section(data, key)
        if section is not None:
            setattr(config, attr, section_cls.from_dict(section))


def load_accounts(path: Path) -> dict[str, Account]:
    """Load accounts from accounts.yaml.

    Args:
        path: Path to accounts.yaml.

    Returns:
        Accounts by id.
    """
    data = load_yaml_file(path)

    accounts: dict[str, Account] = {}
    for account_data in _entries(data, "accounts"):
        try:
            account = Account.from_dict(account_data)
        except KeyError as e:
            raise ConfigError(f"Account entry missing required key {e}: {account_data}") from e
        if account.id in accounts:
            raise ConfigError(f"Duplicate account id: {account.id}")
        accounts[account.id] = account
    return accounts


def load_categories(path: Path) -> tuple[dict[str, Category], list[CategoryRule]]:
    """Load categories and rules from categories.yaml.

    Args:
        path: Path to categories.yaml.

    Returns:
        Tuple of (categories dict, rules list in evaluation order).

    Raises:
        ConfigError: If an entry is malformed or a rule names an unknown category.
    """
    data = load_yaml_file(path)

    categories: dict[str, Category] = {}
    for cat_data in _entries(data, "categories"):
        try:
            category = Category.from_dict(cat_data)
        except KeyError as e:
            raise ConfigError(f"Category entry missing required key {e}: {cat_data}") from e
        categories[category.id] = category

    rules: list[CategoryRule] = []
    for sequence, rule_data in enumerate(_entries(data, "rules")):
        try:
            rule = CategoryRule.from_dict(rule_data)
        except KeyError as e:
            raise ConfigError(f"Rule entry missing required key {e}: {rule_data}") from e
        if rule.category_id not in categories:
            raise ConfigError(f"Rule '{rule.id}' references unknown category '{rule.category_id}'")
        rule.sequence = sequence
        rules.append(rule)

    rules.sort(key=lambda r: r.sort_key)
    return categories, rules


def load_export_profiles(path: Path) -> dict[str, ExportProfile]:
    """Load export profiles from export_profiles.yaml.

    Args:
        path: Path to export_profiles.yaml.

    Returns:
        Profiles by id.
    """
    data = load_yaml_file(path)

    profiles: dict[str, ExportProfile] = {}
    for profile_data in _entries(data, "profiles"):
        try:
            profile = ExportProfile.from_dict(profile_data)
        except (KeyError, ValueError) as e:
            raise ConfigError(f"Invalid export profile {profile_data.get('id')}: {e}") from e
        profiles[profile.id] = profile
    return profiles


def load_config(config_dir: Optional[Path] = None) -> Config:
    """Load complete configuration from a config directory.

    Every file is optional; a missing one is logged and defaults are used.

    Args:
        config_dir: Base config directory (default: ./config).

    Returns:
        Complete Config object.

    Raises:
        ConfigError: If a present file is invalid.
    """
    if config_dir is None:
        config_dir = Path("config")

    config = Config()

    settings_path = config_dir / "settings.yaml"
    if settings_path.exists():
        load_settings(settings_path, config)
        logger.info(f"Loaded settings from {settings_path}")
    else:
        logger.warning(f"Settings file not found: {settings_path}, using defaults")

    accounts_path = config_dir / "accounts.yaml"
    if accounts_path.exists():
        config.accounts = load_accounts(accounts_path)
        logger.info(f"Loaded {len(config.accounts)} accounts from {accounts_path}")
    else:
        logger.warning(f"Accounts file not found: {accounts_path}")

    categories_path = config_dir / "categories.yaml"
    if categories_path.exists():
        config.categories, config.category_rules = load_categories(categories_path)
        logger.info(
            f"Loaded {len(config.categories)} categories and "
            f"{len(config.category_rules)} rules from {categories_path}"
        )
    else:
        logger.warning(f"Categories file not found: {categories_path}")

    profiles_path = config_dir / "export_profiles.yaml"
    if profiles_path.exists():
        config.export_profiles = load_export_profiles(profiles_path)
        logger.info(f"Loaded {len(config.export_profiles)} export profiles from {profiles_path}")
    else:
        logger.warning(f"Export profiles file not found: {profiles_path}")

    return config


def sync_reference_data(config: Config, store: "SQLiteStore") -> None:
    """Write configured categories and rules into the store.

    Rules keep their stored creation order across runs; rules created by
    approving proposals are left alone.
    """
    for category in config.categories.values():
        store.upsert_category(category)
    for rule in config.category_rules:
        store.upsert_rule(rule)
    logger.debug(
        f"Synced {len(config.categories)} categories and {len(config.category_rules)} rules"
    )
