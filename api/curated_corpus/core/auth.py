from dataclasses import dataclass, field


@dataclass(slots=True)
class Principal:
    subject: str
    groups: set[str] = field(default_factory=set)
    full_access_group: str | None = None
    surface_access_groups: dict[str, str] = field(default_factory=dict)

    @property
    def actor_id(self) -> str:
        return self.subject

    def can_write_to_corpus(self) -> bool:
        if self.full_access_group and self.full_access_group in self.groups:
            return True
        return any(group in self.groups for group in self.surface_access_groups.values())

    def can_write_to_surface(self, scheduled_surface_guid: str) -> bool:
        if self.full_access_group and self.full_access_group in self.groups:
            return True
        access_group = self.surface_access_groups.get(scheduled_surface_guid)
        return access_group is not None and access_group in self.groups

    def require_surface(self, scheduled_surface_guid: str) -> None:
        if not self.can_write_to_surface(scheduled_surface_guid):
            raise PermissionError(f"no write access to scheduled surface {scheduled_surface_guid}")

    def require_corpus(self) -> None:
        if not self.can_write_to_corpus():
            raise PermissionError("no write access to the curated corpus")


def parse_group_header(group_header: str | None) -> set[str]:
    if not group_header:
        return set()
    return {chunk.strip() for chunk in group_header.split(",") if chunk.strip()}
