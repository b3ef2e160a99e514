"""Resolve human-readable grant references to ledger entities."""

from __future__ import annotations

from dataclasses import dataclass, field
from uuid import UUID

from ..repository import GrantKey, GrantRepository, InstanceRef, SystemRef, TierRef, UserRef
from .csv_rows import GrantRow

# purpose: map emails and names from bulk rows to user/system/tier/instance references
# status: active
# depends_on: corolla.repository.GrantRepository


@dataclass
class Resolution:
    """Lookup outcome for one row; ``unresolved`` holds reader-facing labels."""

    user: UserRef | None = None
    system: SystemRef | None = None
    tier: TierRef | None = None
    instance: InstanceRef | None = None
    unresolved: list[str] = field(default_factory=list)

    @property
    def instance_id(self) -> UUID | None:
        return self.instance.id if self.instance else None

    @property
    def key(self) -> GrantKey | None:
        """Return the grant tuple once user, system and a same-system tier resolved."""

        if not (self.user and self.system and self.tier):
            return None
        if self.tier.system_id != self.system.id:
            return None
        if self.instance is not None and self.instance.system_id != self.system.id:
            return None
        return GrantKey(self.user.id, self.system.id, self.tier.id, self.instance_id)


class ReferenceResolver:
    """Request-scoped resolver memoizing lookups across the rows of one batch.

    Matching is exact after trimming and lower-casing. Tiers and instances are
    looked up inside the resolved system; a name that only exists under a
    different system is attached as-is so validation reports the mismatch.
    """

    def __init__(self, repo: GrantRepository):
        self.repo = repo
        self._users: dict[str, UserRef | None] = {}
        self._systems: dict[str, SystemRef | None] = {}
        self._tiers: dict[tuple[UUID, str], TierRef | None] = {}
        self._instances: dict[tuple[UUID, str], InstanceRef | None] = {}

    def resolve(self, row: GrantRow) -> Resolution:
        resolution = Resolution()

        if row.user_email:
            resolution.user = self._user(row.user_email)
            if resolution.user is None:
                resolution.unresolved.append(f"Unknown user_email: {row.user_email}")

        if row.system_name:
            resolution.system = self._system(row.system_name)
            if resolution.system is None:
                resolution.unresolved.append(f"Unknown system_name: {row.system_name}")

        system = resolution.system
        if system is None:
            return resolution

        if row.access_tier_name:
            resolution.tier = self._tier(system, row.access_tier_name)
            if resolution.tier is None:
                resolution.unresolved.append(
                    f'Unknown access_tier_name "{row.access_tier_name}" for system "{row.system_name}"'
                )

        if row.instance_name:
            resolution.instance = self._instance(system, row.instance_name)
            if resolution.instance is None:
                resolution.unresolved.append(
                    f'Unknown instance_name "{row.instance_name}" for system "{row.system_name}"'
                )
        return resolution

    def _user(self, email: str) -> UserRef | None:
        cache_key = email.strip().lower()
        if cache_key not in self._users:
            self._users[cache_key] = self.repo.find_user_by_email(cache_key)
        return self._users[cache_key]

    def _system(self, name: str) -> SystemRef | None:
        cache_key = name.strip().lower()
        if cache_key not in self._systems:
            self._systems[cache_key] = self.repo.find_system_by_name(cache_key)
        return self._systems[cache_key]

    def _tier(self, system: SystemRef, name: str) -> TierRef | None:
        cache_key = (system.id, name.strip().lower())
        if cache_key not in self._tiers:
            tier = self.repo.find_tier_by_name(system.id, cache_key[1])
            if tier is None:
                tier = _first_foreign(self.repo.find_tiers_named(cache_key[1]), system.id)
            self._tiers[cache_key] = tier
        return self._tiers[cache_key]

    def _instance(self, system: SystemRef, name: str) -> InstanceRef | None:
        cache_key = (system.id, name.strip().lower())
        if cache_key not in self._instances:
            instance = self.repo.find_instance_by_name(system.id, cache_key[1])
            if instance is None:
                instance = _first_foreign(self.repo.find_instances_named(cache_key[1]), system.id)
            self._instances[cache_key] = instance
        return self._instances[cache_key]


def _first_foreign(candidates, system_id: UUID):
    for candidate in candidates:
        if candidate.system_id != system_id:
            return candidate
    return None
