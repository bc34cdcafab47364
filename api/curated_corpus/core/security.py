from fastapi import Depends, Header, HTTPException, status

from curated_corpus.core.auth import Principal, parse_group_header
from curated_corpus.core.config import Settings, get_settings
from curated_corpus.core.registry import Registry, get_registry

ACTOR_HEADER = "X-Curator-Id"
GROUPS_HEADER = "X-Curator-Groups"


async def get_curator_principal(
    settings: Settings = Depends(get_settings),
    registry: Registry = Depends(get_registry),
    x_curator_id: str | None = Header(default=None, alias=ACTOR_HEADER),
    x_curator_groups: str | None = Header(default=None, alias=GROUPS_HEADER),
) -> Principal:
    # Identity is asserted by the fronting gateway; it is recorded here, not verified.
    subject = (x_curator_id or "").strip()
    if not subject:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"curator requests require the {ACTOR_HEADER} header",
        )

    return Principal(
        subject=subject,
        groups=parse_group_header(x_curator_groups),
        full_access_group=settings.full_access_group,
        surface_access_groups={guid: surface.access_group for guid, surface in registry.surfaces.items()},
    )
