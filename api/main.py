import sys, os, uvicorn, logging
from contextlib import asynccontextmanager
from typing import Optional, Protocol, cast

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from config.settings import settings
from services.analysis_service import AnalysisService
from services.db import DatabaseBackend
from services.email_service import EmailService
from services.extraction_service import ExtractionService
from services.inbound_pipeline import InboundPipeline
from services.mailbox_listener import MailboxListener
from services.proposal_lifecycle import ProposalLifecycle
from services.rfp_dispatch_service import RfpDispatchService
from api.routers import rfps, system, vendors

LOG_DIR = settings.log_dir
os.makedirs(LOG_DIR, exist_ok=True)
logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
                    handlers=[logging.StreamHandler(), logging.FileHandler(os.path.join(LOG_DIR, "rfp_ingest.log"))])
logger = logging.getLogger(__name__)


class RfpIngestAppState(Protocol):
    db: Optional[DatabaseBackend]
    extraction_service: Optional[ExtractionService]
    analysis_service: Optional[AnalysisService]
    dispatch_service: Optional[RfpDispatchService]
    mailbox_listener: Optional[MailboxListener]


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("API starting up...")
    state = cast(RfpIngestAppState, app.state)
    try:
        db = DatabaseBackend()
        db.ensure_schema()
        extraction_service = ExtractionService()
        analysis_service = AnalysisService()
        pipeline = InboundPipeline(
            db,
            extraction_service=extraction_service,
            lifecycle=ProposalLifecycle(db, analysis_service),
        )
        state.db = db
        state.extraction_service = extraction_service
        state.analysis_service = analysis_service
        state.dispatch_service = RfpDispatchService(db, EmailService(settings))
        listener = MailboxListener(pipeline, settings=settings)
        listener.start()
        state.mailbox_listener = listener
        logger.info("System initialized successfully.")
    except Exception as e:
        logger.critical(f"FATAL: System initialization failed: {e}", exc_info=True)
        state.db = None
        state.extraction_service = None
        state.analysis_service = None
        state.dispatch_service = None
        state.mailbox_listener = None
    yield
    listener = getattr(state, "mailbox_listener", None)
    if listener is not None:
        listener.stop()
        state.mailbox_listener = None
    state.db = None
    state.dispatch_service = None
    logger.info("API shutting down.")

app = FastAPI(title="RFP Ingest API", version="1.0", lifespan=lifespan)
app.add_middleware(CORSMiddleware, allow_origins=[settings.frontend_url], allow_credentials=True, allow_methods=["*"], allow_headers=["*"])

app.include_router(rfps.router)
app.include_router(vendors.router)
app.include_router(system.router)

@app.get("/", tags=["General"])
def read_root(): return {"message": "RFP proposal ingestion API"}

if __name__ == "__main__":
    uvicorn.run("api.main:app", host="0.0.0.0", port=8000, reload=True)
