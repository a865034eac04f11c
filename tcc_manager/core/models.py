"""Data model for discovered applications and their permission state."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import PurePosixPath
from typing import Any, Dict, Mapping, Optional

# auth_value meaning "allowed" in the access table
AUTH_VALUE_GRANTED = 2

# client_type for bundle identifiers
CLIENT_TYPE_BUNDLE_ID = 0

# indirect_object_identifier for rows without an indirect object
INDIRECT_OBJECT_UNUSED = "UNUSED"


class ServiceKind(Enum):
    """Guarded capabilities managed by the engine.

    The value is the service key stored in the ``access`` table.
    """

    CAMERA = "kTCCServiceCamera"
    MICROPHONE = "kTCCServiceMicrophone"

    @property
    def label(self) -> str:
        """Lowercase name used in messages and on the command line."""
        return self.name.lower()

    @property
    def helper_name(self) -> str:
        """Spelling passed to the external helper (``Camera``, ``Microphone``)."""
        return self.name.capitalize()

    @classmethod
    def parse(cls, text: str) -> "ServiceKind":
        needle = text.strip()
        for kind in cls:
            if needle.lower() in (kind.label, kind.value.lower()):
                return kind
        raise ValueError(f"Unknown service '{text}' (expected camera or microphone)")


ALL_SERVICES = tuple(ServiceKind)


@dataclass
class PermissionState:
    camera: bool = False
    microphone: bool = False
    pending: bool = False

    def granted(self, service: ServiceKind) -> bool:
        return getattr(self, service.label)

    def with_service(self, service: ServiceKind, granted: bool) -> "PermissionState":
        return replace(self, **{service.label: bool(granted)})

    def settled(self) -> "PermissionState":
        return replace(self, pending=False)

    def to_dict(self) -> Dict[str, bool]:
        # pending is transient and never persisted
        return {"camera": self.camera, "microphone": self.microphone}

    @classmethod
    def from_dict(cls, payload: Any) -> "PermissionState":
        """Strictly decode ``{"camera": bool, "microphone": bool}``.

        Anything other than two real booleans yields the not-granted state.
        """
        if not isinstance(payload, Mapping):
            return cls()
        camera = payload.get("camera")
        microphone = payload.get("microphone")
        if not isinstance(camera, bool) or not isinstance(microphone, bool):
            return cls()
        return cls(camera=camera, microphone=microphone)


def app_name_from_path(path: str) -> str:
    name = PurePosixPath(path.rstrip("/")).name
    if name.endswith(".app"):
        name = name[: -len(".app")]
    return name


@dataclass
class AppRecord:
    """One installed application, keyed by its bundle path."""

    id: str
    path: str
    name: str
    identifier: Optional[str] = None
    permissions: PermissionState = field(default_factory=PermissionState)

    @classmethod
    def from_path(cls, path: str) -> "AppRecord":
        return cls(id=path, path=path, name=app_name_from_path(path))

    def copy(self) -> "AppRecord":
        return replace(self, permissions=replace(self.permissions))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "path": self.path,
            "name": self.name,
            "identifier": self.identifier,
            "permissions": self.permissions.to_dict(),
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "AppRecord":
        """Decode a cached entry; raises ValueError on a malformed one."""
        path = payload.get("path")
        if not isinstance(path, str) or not path:
            raise ValueError("cached app entry has no path")
        record_id = payload.get("id", path)
        name = payload.get("name")
        identifier = payload.get("identifier")
        if not isinstance(record_id, str):
            raise ValueError(f"cached app entry {path} has an invalid id")
        if not isinstance(name, str) or not name:
            name = app_name_from_path(path)
        if identifier is not None and not isinstance(identifier, str):
            identifier = None
        return cls(
            id=record_id,
            path=path,
            name=name,
            identifier=identifier or None,
            permissions=PermissionState.from_dict(payload.get("permissions")),
        )

    def matches(self, text: str) -> bool:
        needle = text.lower()
        return (
            needle in self.name.lower()
            or needle in self.path.lower()
            or (self.identifier is not None and needle in self.identifier.lower())
        )


__all__ = [
    "AUTH_VALUE_GRANTED",
    "CLIENT_TYPE_BUNDLE_ID",
    "INDIRECT_OBJECT_UNUSED",
    "ServiceKind",
    "ALL_SERVICES",
    "PermissionState",
    "AppRecord",
    "app_name_from_path",
]
