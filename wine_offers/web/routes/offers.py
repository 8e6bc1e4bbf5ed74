"""JSON routes for offer refreshes, diagnostics and price source management."""

from fastapi import APIRouter, Body, HTTPException
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from wine_offers.core.schema import PriceSource, PriceSourceUpdate
from wine_offers.db.engine import get_session
from wine_offers.db.repositories import CatalogRepository, ExternalOfferRepository, PriceSourceRepository
from wine_offers.offers.detect import detect_platform
from wine_offers.offers.diagnostics import run_diagnostic
from wine_offers.offers.overview import build_offer_overview
from wine_offers.offers.service import OfferRefreshService

router = APIRouter(prefix="/api", tags=["offers"])


# ============================================================================
# Offers
# ============================================================================


@router.post("/offers/refresh/{wine_id}")
async def api_refresh_wine(
    wine_id: str,
    threshold: float | None = None,
    source_id: str | None = None,
) -> JSONResponse:
    """Refresh offers for one wine against every active source."""
    with get_session() as session:
        if CatalogRepository(session).get_wine_for_match(wine_id) is None:
            raise HTTPException(status_code=404, detail="Wine not found")

        service = OfferRefreshService(session)
        result = await service.refresh_wine(wine_id, match_threshold=threshold, source_id=source_id)

    return JSONResponse(result.to_dict())


@router.post("/offers/refresh-all")
async def api_refresh_all(
    threshold: float | None = None,
    batch_size: int | None = None,
    source_id: str | None = None,
    enqueue: bool = False,
) -> JSONResponse:
    """
    Refresh offers for the whole catalog.

    With enqueue=true the batch is handed to the arq worker and the job ID
    is returned immediately.
    """
    if enqueue:
        from wine_offers.offers.jobs import enqueue_refresh_all

        job_id = await enqueue_refresh_all(threshold, batch_size, source_id)
        return JSONResponse({"job_id": job_id}, status_code=202)

    with get_session() as session:
        service = OfferRefreshService(session)
        result = await service.refresh_all_wines(
            match_threshold=threshold, batch_size=batch_size, source_id=source_id
        )

    return JSONResponse(result.to_dict())


@router.get("/offers/diagnose")
async def api_diagnose(
    wine_id: str,
    source_id: str,
    threshold: float | None = None,
) -> JSONResponse:
    """Trace the match pipeline for one wine against one source."""
    with get_session() as session:
        output = await run_diagnostic(session, wine_id, source_id, match_threshold=threshold)

    return JSONResponse(output.to_dict())


@router.get("/offers/wine/{wine_id}")
async def api_offers_for_wine(wine_id: str) -> JSONResponse:
    """Stored offers for a wine, cheapest first."""
    with get_session() as session:
        offers = ExternalOfferRepository(session).list_by_wine(wine_id)

    return JSONResponse([o.model_dump(mode="json") for o in offers])


@router.get("/offers")
async def api_list_offers(limit: int | None = None) -> JSONResponse:
    """All stored offers with recomputed producer/wine-name match flags."""
    with get_session() as session:
        rows = build_offer_overview(session, limit=limit)

    return JSONResponse([r.model_dump(mode="json") for r in rows])


# ============================================================================
# Price sources
# ============================================================================


@router.get("/price-sources")
async def api_list_price_sources(active_only: bool = False) -> JSONResponse:
    """List price sources ordered by name."""
    with get_session() as session:
        sources = PriceSourceRepository(session).list_all(active_only=active_only)

    return JSONResponse([s.model_dump(mode="json") for s in sources])


@router.post("/price-sources", status_code=201)
async def api_create_price_source(source: PriceSource) -> JSONResponse:
    """Create a price source."""
    with get_session() as session:
        repo = PriceSourceRepository(session)
        if repo.get_by_slug(source.slug) is not None:
            raise HTTPException(status_code=409, detail=f"Slug '{source.slug}' already exists")
        created = repo.create(source)
        session.commit()

    return JSONResponse(created.model_dump(mode="json"), status_code=201)


@router.post("/price-sources/detect")
async def api_detect_platform(url: str = Body(..., embed=True)) -> JSONResponse:
    """Classify a shop as shopify, woocommerce or unknown."""
    detection = await detect_platform(url)
    return JSONResponse(detection.to_dict())


@router.get("/price-sources/{source_id}")
async def api_get_price_source(source_id: str) -> JSONResponse:
    """Get a price source by ID."""
    with get_session() as session:
        source = PriceSourceRepository(session).get_by_id(source_id)

    if source is None:
        raise HTTPException(status_code=404, detail="Price source not found")
    return JSONResponse(source.model_dump(mode="json"))


@router.patch("/price-sources/{source_id}")
async def api_update_price_source(source_id: str, update: PriceSourceUpdate) -> JSONResponse:
    """Update fields of a price source."""
    with get_session() as session:
        repo = PriceSourceRepository(session)
        source = repo.get_by_id(source_id)
        if source is None:
            raise HTTPException(status_code=404, detail="Price source not found")

        try:
            changed = update.apply_to(source)
        except ValidationError as e:
            raise HTTPException(status_code=422, detail=[err["msg"] for err in e.errors()]) from e

        existing = repo.get_by_slug(changed.slug)
        if existing is not None and existing.id != source_id:
            raise HTTPException(status_code=409, detail=f"Slug '{changed.slug}' already exists")

        updated = repo.update(changed)
        session.commit()

    return JSONResponse(updated.model_dump(mode="json"))


@router.delete("/price-sources/{source_id}")
async def api_delete_price_source(source_id: str) -> JSONResponse:
    """Delete a price source and its offers."""
    with get_session() as session:
        deleted = PriceSourceRepository(session).delete(source_id)
        if not deleted:
            raise HTTPException(status_code=404, detail="Price source not found")
        session.commit()

    return JSONResponse({"success": True})
