import datetime as dt
import logging

import httpx
from fastapi import Depends, FastAPI, File, HTTPException, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware

from price_extraction import __version__
from price_extraction.ingestion import extract_pdf_text
from price_extraction.main import PriceReportPipeline
from price_extraction.schemas import PriceReport, StoredReport
from price_extraction.sources import (
    BulletinNotFoundError,
    is_bulletin_url,
    parse_date_from_filename,
)
from price_extraction.storage import ReportStore

logger = logging.getLogger(__name__)

app = FastAPI(title="Daily Price Bulletin API", version=__version__)
app.add_middleware(CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"], allow_headers=["*"])

_store = None


def get_store() -> ReportStore:
    global _store
    if _store is None:
        _store = ReportStore()
    return _store


def get_pipeline(store: ReportStore = Depends(get_store)) -> PriceReportPipeline:
    return PriceReportPipeline(store)


@app.get("/")
def root():
    return {"message": "Price bulletin extractor is running", "version": __version__}


@app.get("/getLatestPrices", response_model=StoredReport)
def get_latest_prices(store: ReportStore = Depends(get_store)):
    stored = store.latest()
    if stored is None:
        raise HTTPException(404, "No price data found")
    return stored


@app.post("/updatePrices", response_model=StoredReport)
def update_prices(report: PriceReport, pipeline: PriceReportPipeline = Depends(get_pipeline)):
    try:
        return pipeline.store_report(report)
    except ValueError as e:
        raise HTTPException(422, str(e))


@app.post("/update-latest-daily-prices", response_model=StoredReport)
async def update_latest_daily_prices(pipeline: PriceReportPipeline = Depends(get_pipeline)):
    try:
        return await pipeline.update_latest()
    except BulletinNotFoundError as e:
        raise HTTPException(404, f"No recent price bulletin found: {e}")
    except httpx.HTTPError as e:
        logger.error("Bulletin download failed: %s", e)
        raise HTTPException(502, f"Download failed: {e}")
    except ValueError as e:
        raise HTTPException(422, str(e))


@app.post("/extract-manual", response_model=StoredReport)
async def extract_manual(
    file: UploadFile = File(...),
    pipeline: PriceReportPipeline = Depends(get_pipeline),
):
    if file.content_type != "application/pdf":
        raise HTTPException(400, "File must be PDF")

    content = await file.read()
    date = parse_date_from_filename(file.filename or "") or dt.date.today()
    try:
        return await run_in_threadpool(
            pipeline.ingest_pdf, content, f"upload:{file.filename}", date
        )
    except ValueError as e:
        raise HTTPException(422, str(e))


@app.get("/parse-sample-pdf")
async def parse_sample_pdf(url: str, pipeline: PriceReportPipeline = Depends(get_pipeline)):
    """Raw extracted text of a bulletin PDF, for eyeballing a new template."""
    if not is_bulletin_url(url):
        raise HTTPException(400, "URL must point at the bulletin publisher")
    try:
        content = await pipeline.download(url)
    except httpx.HTTPError as e:
        raise HTTPException(502, f"Download failed: {e}")
    try:
        text = await run_in_threadpool(extract_pdf_text, content)
    except ValueError as e:
        raise HTTPException(422, str(e))
    return {"url": url, "text": text}


if __name__ == "__main__":
    import os

    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=int(os.environ.get("PORT", 8080)))
