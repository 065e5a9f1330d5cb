from typing import Optional

from fastapi import APIRouter, Depends, Query

from manuscripta.api.v1.deps import get_public_service
from manuscripta.services.public_service import PublicCatalogService

router = APIRouter(prefix="/public", tags=["Public"])


@router.get("/articles/{article_id}")
async def get_article(article_id: str, service: PublicCatalogService = Depends(get_public_service)):
    """
    已发表文章详情（含 DOI 与所在卷期）；未发表返回 404
    """
    return {"success": True, "data": service.get_article(article_id)}


@router.get("/doi/{doi:path}")
async def get_article_by_doi(doi: str, service: PublicCatalogService = Depends(get_public_service)):
    return {"success": True, "data": service.get_article_by_doi(doi)}


@router.get("/search")
async def search_articles(
    q: Optional[str] = Query(None, max_length=200),
    year: Optional[int] = Query(None, ge=1900, le=2200),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=50),
    service: PublicCatalogService = Depends(get_public_service),
):
    return {"success": True, **service.search(q, year=year, page=page, limit=limit)}


@router.get("/archive")
async def get_archive(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=50),
    service: PublicCatalogService = Depends(get_public_service),
):
    return {"success": True, **service.archive(page=page, limit=limit)}


@router.get("/stats")
async def get_journal_stats(service: PublicCatalogService = Depends(get_public_service)):
    return {"success": True, "data": service.journal_stats()}
