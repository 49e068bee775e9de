"""Fixed GATT identifiers of the attitude sensor peripheral."""

from __future__ import annotations

from dataclasses import dataclass


def normalize_uuid(value: str) -> str:
    """Return the canonical (lowercase, stripped) form of a 128-bit UUID string."""
    return value.strip().lower()


@dataclass(frozen=True)
class TargetDescriptor:
    """Service/characteristic pair the central looks for.

    Bleak reports UUIDs in lowercase while the identifiers are published in
    uppercase, so all comparisons go through :func:`normalize_uuid`.
    """

    service_id: str
    characteristic_id: str

    def is_service(self, uuid: str) -> bool:
        return normalize_uuid(uuid) == normalize_uuid(self.service_id)

    def is_characteristic(self, uuid: str) -> bool:
        return normalize_uuid(uuid) == normalize_uuid(self.characteristic_id)


ATTITUDE_SERVICE = "33E02682-FD2C-4E00-A02D-BAE119562994"
ATTITUDE_CHAR = "4CA9A5C5-9AD1-4ED4-8562-49F28AB7F83E"  # Notify (device to client)

TARGET = TargetDescriptor(service_id=ATTITUDE_SERVICE, characteristic_id=ATTITUDE_CHAR)
