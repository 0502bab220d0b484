"""FastAPI application entry point"""

from contextlib import asynccontextmanager
from typing import Any, Callable, Optional
import logging

from fastapi import BackgroundTasks, FastAPI, HTTPException, Request
from pydantic import AnyHttpUrl, BaseModel
from sqlalchemy import text

from linkrefresh.config.database import SessionLocal
from linkrefresh.config.settings import settings
from linkrefresh.crawlers.log_sanitizer import sanitize_for_log
from linkrefresh.crawlers.web_metadata import WebMetadataExtractor
from linkrefresh.errors import PermanentHttpError, TransientNetworkError
from linkrefresh.jobs.refresh_tick import parse_record_ids
from linkrefresh.scheduler import RefreshScheduler

# Configure logging
logging.basicConfig(
    level=settings.LOG_LEVEL,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


class ScrapeRequest(BaseModel):
    url: AnyHttpUrl


def create_app(
    *,
    scheduler: Optional[RefreshScheduler] = None,
    session_factory: Callable[[], Any] = SessionLocal,
    extractor_factory: Callable[[], Any] = WebMetadataExtractor,
    start_scheduler: Optional[bool] = None,
) -> FastAPI:
    """Build the status/trigger API around a refresh scheduler."""
    refresh_scheduler = scheduler or RefreshScheduler()
    autostart = settings.REFRESH_SCHEDULER_ENABLED if start_scheduler is None else start_scheduler

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if autostart:
            refresh_scheduler.start()
        try:
            yield
        finally:
            # In-flight records finish and persist before the process exits.
            await refresh_scheduler.shutdown()

    app = FastAPI(
        title=settings.APP_NAME,
        description="Background metadata refresh and enrichment for bookmarks",
        version=settings.APP_VERSION,
        lifespan=lifespan,
    )
    app.state.scheduler = refresh_scheduler
    app.state.session_factory = session_factory
    app.state.extractor_factory = extractor_factory

    @app.get("/")
    async def root():
        """Root endpoint"""
        return {
            "service": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "endpoints": {
                "health": "/api/health",
                "scheduler": "/api/health/scheduler",
                "database": "/api/health/database",
                "tick": "POST /api/refresh/tick?record_ids=1,2",
                "scrape": "POST /api/scrape",
            },
        }

    @app.get("/api/health")
    async def health_check():
        return {
            "status": "healthy",
            "service": "linkrefresh",
            "version": settings.APP_VERSION,
        }

    @app.get("/api/health/scheduler")
    async def scheduler_status(request: Request):
        """Tick-status surface: outcome of the most recent tick."""
        current: RefreshScheduler = request.app.state.scheduler
        return {
            "scheduler_running": current.is_running,
            "stop_requested": current.stop_requested,
            **current.status.as_dict(),
        }

    @app.get("/api/health/database")
    async def database_status(request: Request):
        db = request.app.state.session_factory()
        try:
            db.execute(text("SELECT 1"))
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            raise HTTPException(status_code=503, detail="database unavailable")
        finally:
            db.close()
        return {"status": "healthy"}

    @app.post("/api/refresh/tick")
    async def trigger_tick(request: Request, background_tasks: BackgroundTasks, record_ids: Optional[str] = None):
        """Run one refresh tick in the background."""
        current: RefreshScheduler = request.app.state.scheduler
        if current.stop_requested:
            raise HTTPException(status_code=409, detail="scheduler is shutting down")

        parsed_ids = parse_record_ids(record_ids)
        logger.info(f"Manual refresh tick triggered (record_ids={parsed_ids})")
        background_tasks.add_task(current.run_tick, record_ids=parsed_ids)
        return {
            "status": "started",
            "record_ids": parsed_ids,
            "message": "Refresh tick started in background",
        }

    @app.post("/api/scrape")
    async def scrape(request: Request, payload: ScrapeRequest):
        """Preview a URL's metadata without storing anything."""
        url = str(payload.url)
        logger.info(f"Scraping URL for metadata: {sanitize_for_log(url, key='url')}")

        try:
            async with request.app.state.extractor_factory() as extractor:
                metadata = await extractor.extract(url)
        except PermanentHttpError as e:
            logger.warning(f"Scrape rejected by upstream: {e}")
            raise HTTPException(status_code=422, detail=f"URL answered HTTP {e.status_code}")
        except TransientNetworkError as e:
            logger.warning(f"Scrape failed: {e}")
            raise HTTPException(status_code=502, detail="URL could not be fetched")

        return {
            "url": metadata.final_url,
            "title": metadata.title,
            "description": metadata.description,
            "favicon": metadata.logo,
            "source_code_url": metadata.source_code_url,
            "documentation_url": metadata.documentation_url,
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("linkrefresh.main:app", host="0.0.0.0", port=8000, reload=settings.DEBUG)
