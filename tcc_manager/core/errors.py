"""Exception hierarchy for discovery, store access and mutation failures."""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Sequence, Union

PathLike = Union[str, Path]


class TCCManagerError(Exception):
    """Base class for every error raised by the engine."""


class DiscoveryUnavailable(TCCManagerError):
    """Neither the metadata index nor the directory walk found any app."""


class IdentifierNotFound(TCCManagerError):
    def __init__(self, bundle_path: PathLike):
        self.bundle_path = str(bundle_path)
        super().__init__(f"Could not read bundle identifier for {self.bundle_path}")


class StoreUnavailable(TCCManagerError):
    """The authorization database is missing or cannot be opened."""

    def __init__(self, db_path: PathLike, detail: str = ""):
        self.db_path = str(db_path)
        self.detail = detail
        message = f"Authorization store unavailable: {self.db_path}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class QueryFailed(TCCManagerError):
    def __init__(self, db_path: PathLike, detail: str):
        self.db_path = str(db_path)
        self.detail = detail
        super().__init__(f"Query against {self.db_path} failed: {detail}")


class ProcessError(TCCManagerError):
    """An external tool could not be started or exited abnormally."""

    def __init__(self, argv: Sequence[str], detail: str, returncode: Optional[int] = None):
        self.argv = list(argv)
        self.detail = detail
        self.returncode = returncode
        tool = self.argv[0] if self.argv else "<unknown>"
        super().__init__(f"{tool}: {detail}")


class ProcessTimeout(ProcessError):
    def __init__(self, argv: Sequence[str], timeout: float):
        self.timeout = timeout
        super().__init__(argv, f"timed out after {timeout:.1f}s")


class MutationFailed(TCCManagerError):
    """A grant or revoke could not be applied to the store."""

    def __init__(self, action: str, service: str, detail: str):
        self.action = action
        self.service = service
        self.detail = detail
        super().__init__(f"Failed to {action} {service} permission: {detail}")


class HelperNotFound(MutationFailed):
    def __init__(self, action: str, service: str, candidates: Sequence[PathLike] = ()):
        self.candidates = [str(path) for path in candidates]
        super().__init__(
            action,
            service,
            "permission helper not found; install tccplus or configure helper_paths",
        )


class HelperNotExecutable(MutationFailed):
    def __init__(self, action: str, service: str, helper_path: PathLike):
        self.helper_path = str(helper_path)
        super().__init__(action, service, f"permission helper is not executable: {self.helper_path}")


class VerificationExhausted(TCCManagerError):
    """A mutation was not observable within the verification budget."""

    def __init__(self, key: str, attempts: int):
        self.key = key
        self.attempts = attempts
        super().__init__(f"{key} not confirmed after {attempts} verification reads")


__all__ = [
    "TCCManagerError",
    "DiscoveryUnavailable",
    "IdentifierNotFound",
    "StoreUnavailable",
    "QueryFailed",
    "ProcessError",
    "ProcessTimeout",
    "MutationFailed",
    "HelperNotFound",
    "HelperNotExecutable",
    "VerificationExhausted",
]
