"""bqdump error hierarchy.

Every fatal stage failure is a DumpError subclass; the CLI maps all of them
to exit status 1. CleanupError is the only one the pipeline logs and drops.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

import requests
from google.api_core import exceptions as gexc
from google.auth import exceptions as auth_exceptions

# what a Google client call can raise: API errors, credential refresh, transport
REMOTE_ERRORS = (
    gexc.GoogleAPIError,
    auth_exceptions.GoogleAuthError,
    requests.exceptions.RequestException,
)


class DumpError(Exception):
    """Base exception for all bqdump errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code for logging
        context: Key/value details (dataset, table, format, shard, ...)
    """

    code = "DUMP_ERROR"

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        self.message = message
        self.context = dict(context or {})
        super().__init__(message)

    def __str__(self) -> str:
        base = f"[{self.code}] {self.message}"
        if self.context:
            details = ", ".join(f"{k}={v}" for k, v in self.context.items())
            base += f" ({details})"
        return base


class ValidationError(DumpError):
    """Bad or missing arguments. Raised before any remote call."""

    code = "VALIDATION_ERROR"


class UnsupportedFormatError(ValidationError):
    code = "UNSUPPORTED_FORMAT"


class ProvisioningError(DumpError):
    """Staging bucket could not be looked up or created."""

    code = "PROVISIONING_ERROR"


class ExportError(DumpError):
    """Dataset/table missing, permission denied, or extract job failure."""

    code = "EXPORT_ERROR"


class TransferError(DumpError):
    """A shard download failed after the client retry policy gave up."""

    code = "TRANSFER_ERROR"


class CorruptShardError(DumpError):
    code = "CORRUPT_SHARD"


class AssemblyError(DumpError):
    """No shards to assemble, or the output could not be written."""

    code = "ASSEMBLY_ERROR"


class CleanupError(DumpError):
    """Remote purge failure. Logged only, never fails a run."""

    code = "CLEANUP_ERROR"
