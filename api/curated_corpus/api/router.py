from fastapi import APIRouter

from curated_corpus.api.routes import approved_items, domains, health, scheduled_items, sections

api_router = APIRouter()
api_router.include_router(health.router, tags=["health"])
api_router.include_router(approved_items.router, prefix="/approved-items", tags=["corpus"])
api_router.include_router(approved_items.rejected_router, prefix="/rejected-items", tags=["corpus"])
api_router.include_router(scheduled_items.router, prefix="/scheduled-items", tags=["scheduling"])
api_router.include_router(scheduled_items.reviews_router, prefix="/schedule-reviews", tags=["scheduling"])
api_router.include_router(scheduled_items.surfaces_router, prefix="/scheduled-surfaces", tags=["scheduling"])
api_router.include_router(sections.router, prefix="/sections", tags=["sections"])
api_router.include_router(sections.items_router, prefix="/section-items", tags=["sections"])
api_router.include_router(domains.publisher_router, prefix="/publisher-domains", tags=["domains"])
api_router.include_router(domains.excluded_router, prefix="/excluded-domains", tags=["domains"])
