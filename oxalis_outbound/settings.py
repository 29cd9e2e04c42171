"""Configuration for the Oxalis outbound daemon."""
import os
import re
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from dotenv import load_dotenv

from oxalis_outbound.errors import ConfigError

# Base paths
BASE_DIR = Path(__file__).resolve().parent.parent

POLICIES = ("delete", "move", "noop")
ROUTING_STRATEGIES = ("auto", "sbdh", "party")
LOG_LEVELS = {
    "DEBUG": "DEBUG",
    "INFO": "INFO",
    "NOTICE": "INFO",
    "WARNING": "WARNING",
    "ERROR": "ERROR",
}

# Allowance per item for blob I/O and disposition, on top of the transport timeout
ITEM_OVERHEAD = 30
# Longest visibility timeout the queue service accepts (7 days)
MAX_VISIBILITY_TIMEOUT = 7 * 24 * 3600


@dataclass
class Settings:
    """Runtime configuration, resolved once at startup."""

    connection_string: Optional[str] = None
    cert_path: Optional[str] = None
    oxalis_standalone: str = "sh /oxalis/bin-standalone/run-docker.sh"
    transport_protocol: str = "peppol-transport-as4-v2_0"
    transport_timeout: int = 300
    archive_container: str = "archived"
    failed_container: str = "failed"
    queue_name: str = "outbound"
    after_completed: str = "move"
    after_failed: str = "move"
    routing_strategy: str = "auto"
    log_level: str = "INFO"
    logs_dir: Path = field(default_factory=lambda: BASE_DIR / "logs")
    betterstack_source_token: Optional[str] = None
    betterstack_ingest_host: Optional[str] = None
    scratch_dir: Path = field(default_factory=lambda: Path(tempfile.gettempdir()))
    batch_size: int = 10
    poll_interval: int = 1  # seconds between queue polls
    io_error_pause: int = 60  # seconds to back off after a local I/O failure
    visibility_timeout: Optional[int] = None  # derived from the batch when unset
    workers: int = 1

    # Raw values that failed to parse, reported by validate()
    _invalid: List[str] = field(default_factory=list, repr=False)

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> "Settings":
        """Build settings from the environment (and .env, when present)."""
        if environ is None:
            load_dotenv()
            environ = dict(os.environ)

        settings = cls()
        invalid = settings._invalid

        def integer(name: str, default: int) -> int:
            raw = environ.get(name)
            if raw is None or raw == "":
                return default
            try:
                return int(raw)
            except ValueError:
                invalid.append(f"{name} must be an integer: {raw!r}")
                return default

        settings.connection_string = environ.get("AZURE_STORAGE_ACCOUNT_CONNECTION_STRING") or \
            _read_first_line(environ.get("CONNECTION_STRING_FILE", "connectionstring.txt"))
        settings.cert_path = environ.get("PEPPOL_CERT_PATH") or None
        settings.oxalis_standalone = environ.get("OXALIS_STANDALONE") or settings.oxalis_standalone
        settings.transport_protocol = environ.get("TRANSPORT_PROTOCOL") or settings.transport_protocol
        settings.transport_timeout = integer("TRANSPORT_TIMEOUT", settings.transport_timeout)
        settings.archive_container = environ.get("OUTBOUND_AZURE_BLOB_ARCHIVED") or settings.archive_container
        settings.failed_container = environ.get("OUTBOUND_AZURE_BLOB_FAILED") or settings.failed_container
        settings.queue_name = environ.get("OUTBOUND_AZURE_QUEUE_OUTBOUND") or settings.queue_name

        # Unknown policies fall back to moving the blob, so nothing is lost
        settings.after_completed = _choice(environ.get("AFTER_COMPLETED"), POLICIES, "move")
        settings.after_failed = _choice(environ.get("AFTER_FAILED"), POLICIES, "move")

        settings.routing_strategy = (environ.get("ROUTING_STRATEGY") or "auto").lower()
        settings.log_level = LOG_LEVELS.get((environ.get("LOG_LEVEL") or "INFO").upper(), "INFO")
        if environ.get("LOGS_DIR"):
            settings.logs_dir = Path(environ["LOGS_DIR"])
        settings.betterstack_source_token = environ.get("BETTERSTACK_SOURCE_TOKEN") or None
        settings.betterstack_ingest_host = environ.get("BETTERSTACK_INGEST_HOST") or None
        if environ.get("SCRATCH_DIR"):
            settings.scratch_dir = Path(environ["SCRATCH_DIR"])

        settings.batch_size = integer("BATCH_SIZE", settings.batch_size)
        settings.poll_interval = integer("POLL_INTERVAL", settings.poll_interval)
        settings.io_error_pause = integer("IO_ERROR_PAUSE", settings.io_error_pause)
        if environ.get("VISIBILITY_TIMEOUT"):
            settings.visibility_timeout = integer("VISIBILITY_TIMEOUT", 0) or None
        settings.workers = integer("WORKERS", settings.workers)

        return settings

    def validate(self) -> None:
        """Validate required configuration."""
        errors = list(self._invalid)

        if not self.connection_string:
            errors.append(
                "AZURE_STORAGE_ACCOUNT_CONNECTION_STRING is required "
                "(or place it in connectionstring.txt)"
            )

        if not self.cert_path:
            errors.append("PEPPOL_CERT_PATH is required")

        if self.routing_strategy not in ROUTING_STRATEGIES:
            errors.append(
                f"ROUTING_STRATEGY must be one of {', '.join(ROUTING_STRATEGIES)}: {self.routing_strategy}"
            )

        for name in ("batch_size", "transport_timeout", "workers"):
            if getattr(self, name) <= 0:
                errors.append(f"{name.upper()} must be positive")

        for name in ("poll_interval", "io_error_pause"):
            if getattr(self, name) < 0:
                errors.append(f"{name.upper()} must not be negative")

        # Every item of a batch must still be held when its turn comes
        minimum = self.batch_hold_time
        if self.visibility_timeout is not None and self.visibility_timeout < minimum:
            errors.append(
                f"VISIBILITY_TIMEOUT must be at least {minimum}s "
                f"(BATCH_SIZE x (TRANSPORT_TIMEOUT + {ITEM_OVERHEAD}s)): {self.visibility_timeout}"
            )
        if self.effective_visibility_timeout > MAX_VISIBILITY_TIMEOUT:
            errors.append(
                f"Visibility timeout {self.effective_visibility_timeout}s exceeds {MAX_VISIBILITY_TIMEOUT}s; "
                "lower BATCH_SIZE or TRANSPORT_TIMEOUT"
            )

        if errors:
            raise ConfigError("Config errors:\n  " + "\n  ".join(errors))

    @property
    def batch_hold_time(self) -> int:
        """Worst-case seconds between receiving a batch and acknowledging its last item."""
        return self.batch_size * (self.transport_timeout + ITEM_OVERHEAD)

    @property
    def effective_visibility_timeout(self) -> int:
        return self.visibility_timeout or self.batch_hold_time

    def describe(self) -> Dict[str, str]:
        """Effective configuration for the startup banner, secrets masked."""
        return {
            "connection_string": mask_connection_string(self.connection_string or ""),
            "cert_path": str(self.cert_path),
            "oxalis_standalone": self.oxalis_standalone,
            "transport_protocol": self.transport_protocol,
            "transport_timeout": f"{self.transport_timeout}s",
            "queue": self.queue_name,
            "archive_container": self.archive_container,
            "failed_container": self.failed_container,
            "after_completed": self.after_completed,
            "after_failed": self.after_failed,
            "routing_strategy": self.routing_strategy,
            "log_level": self.log_level,
            "scratch_dir": str(self.scratch_dir),
            "batch_size": str(self.batch_size),
            "poll_interval": f"{self.poll_interval}s",
            "io_error_pause": f"{self.io_error_pause}s",
            "visibility_timeout": f"{self.effective_visibility_timeout}s",
            "workers": str(self.workers),
        }


def mask_connection_string(value: str) -> str:
    """Hide account keys and SAS signatures in a storage connection string."""
    return re.sub(r"((?:AccountKey|SharedAccessSignature)=)[^;]*", r"\1***", value)


def _choice(value: Optional[str], allowed, default: str) -> str:
    value = (value or "").strip().lower()
    return value if value in allowed else default


def _read_first_line(path: str) -> Optional[str]:
    try:
        with open(path, "r") as f:
            return f.readline().strip() or None
    except FileNotFoundError:
        return None
