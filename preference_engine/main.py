"""Main application entry point with FastAPI."""

import logging
import sys
from contextlib import asynccontextmanager
from typing import Any

from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, ValidationError
from sqlalchemy.orm import Session

from .catalog import export_prompt_schema
from .config import get_settings
from .database import check_database_health, dispose_engine, get_db
from .document_analysis import DocumentAnalyzer
from .errors import NotFoundError, OwnershipError, PreferenceError
from .errors import ValidationError as PreferenceValidationError
from .lifecycle import PreferenceManager
from .locations import LocationService
from .models import LocationType
from .reconciliation import Operation, Suggestion

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def validate_environment():
    """Validate all required environment variables on startup."""
    try:
        settings = get_settings()
        logging.getLogger().setLevel(settings.log_level.upper())
        logger.info("Environment variables validated successfully")
        return settings
    except ValidationError as e:
        logger.error("ERROR: Missing or invalid environment variables:")
        logger.error(str(e))
        sys.exit(1)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown."""
    logger.info("Starting Preference Service...")
    settings = validate_environment()
    if not settings.ai_configured:
        logger.warning("ANTHROPIC_API_KEY not set - document analysis will report ai_error")
    logger.info("Preference Service started successfully")

    yield

    logger.info("Shutting down Preference Service...")
    dispose_engine()
    logger.info("Preference Service shutdown complete")


# Create FastAPI app
app = FastAPI(
    title="Preference Service",
    description="Typed user preferences with AI-suggested changes",
    version="1.0.0",
    lifespan=lifespan,
)


# =============================================================================
# Dependencies & Error Mapping
# =============================================================================

_manager = PreferenceManager()


def get_preference_manager() -> PreferenceManager:
    return _manager


def get_document_analyzer(
    manager: PreferenceManager = Depends(get_preference_manager),
) -> DocumentAnalyzer:
    return DocumentAnalyzer(manager)


def current_user(x_user_id: str = Header(...)) -> str:
    """Caller identity; token verification happens in front of this service."""
    return x_user_id


@app.exception_handler(PreferenceError)
async def preference_error_handler(request: Request, exc: PreferenceError):
    if isinstance(exc, NotFoundError):
        status_code = 404
    elif isinstance(exc, OwnershipError):
        status_code = 403
    else:
        status_code = 400

    body = {"error": type(exc).__name__, "detail": str(exc)}
    if isinstance(exc, PreferenceValidationError) and exc.suggestions:
        body["did_you_mean"] = exc.suggestions
    return JSONResponse(status_code=status_code, content=body)


# =============================================================================
# Request Bodies
# =============================================================================


class SetPreferenceRequest(BaseModel):
    slug: str
    value: Any
    location_id: str | None = None


class SuggestPreferenceRequest(BaseModel):
    slug: str
    value: Any
    confidence: float
    location_id: str | None = None
    evidence: dict | None = None


class CreateLocationRequest(BaseModel):
    type: LocationType
    label: str = Field(min_length=1)
    address: str = Field(min_length=1)


class UpdateLocationRequest(BaseModel):
    type: LocationType | None = None
    label: str | None = Field(default=None, min_length=1)
    address: str | None = Field(default=None, min_length=1)


class ApplySuggestionRequest(BaseModel):
    suggestion_id: str
    slug: str
    operation: Operation
    new_value: Any = None
    confidence: float = 0.0
    source_snippet: str = ""

    def to_suggestion(self) -> Suggestion:
        return Suggestion(
            id=self.suggestion_id,
            slug=self.slug,
            operation=self.operation,
            new_value=self.new_value,
            confidence=self.confidence,
            source_snippet=self.source_snippet,
        )


class ApplySuggestionsRequest(BaseModel):
    analysis_id: str
    location_id: str | None = None
    suggestions: list[ApplySuggestionRequest]


# =============================================================================
# Health
# =============================================================================


@app.get("/health")
async def health_check():
    """Health check endpoint.

    Verifies database connection and returns status.
    """
    if check_database_health():
        return {"status": "healthy", "database": "connected"}
    return {"status": "unhealthy", "database": "disconnected"}


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "Preference Service",
        "status": "running",
        "version": "1.0.0",
    }


@app.get("/catalog")
async def get_catalog():
    return {"slugs": export_prompt_schema()}


# =============================================================================
# Locations
# =============================================================================


@app.post("/locations", status_code=201)
def create_location(
    body: CreateLocationRequest,
    user_id: str = Depends(current_user),
    db: Session = Depends(get_db),
):
    location = LocationService(db).create(user_id, body.type, body.label, body.address)
    db.commit()
    return location.to_dict()


@app.get("/locations")
def list_locations(user_id: str = Depends(current_user), db: Session = Depends(get_db)):
    return [loc.to_dict() for loc in LocationService(db).list_for_user(user_id)]


@app.patch("/locations/{location_id}")
def update_location(
    location_id: str,
    body: UpdateLocationRequest,
    user_id: str = Depends(current_user),
    db: Session = Depends(get_db),
):
    location = LocationService(db).update(
        location_id, user_id, type=body.type, label=body.label, address=body.address
    )
    db.commit()
    return location.to_dict()


@app.delete("/locations/{location_id}")
def delete_location(
    location_id: str,
    user_id: str = Depends(current_user),
    db: Session = Depends(get_db),
):
    """Delete a location; its location-scoped preferences go with it."""
    location = LocationService(db).delete(location_id, user_id)
    db.commit()
    return location.to_dict()


# =============================================================================
# Preferences
# =============================================================================


@app.get("/preferences")
def list_active_preferences(
    location_id: str | None = Query(default=None),
    user_id: str = Depends(current_user),
    manager: PreferenceManager = Depends(get_preference_manager),
):
    return [p.to_dict() for p in manager.get_active_preferences(user_id, location_id)]


@app.put("/preferences")
def set_preference(
    body: SetPreferenceRequest,
    user_id: str = Depends(current_user),
    manager: PreferenceManager = Depends(get_preference_manager),
):
    return manager.set_preference(user_id, body.slug, body.value, body.location_id).to_dict()


@app.get("/preferences/suggestions")
def list_suggestions(
    location_id: str | None = Query(default=None),
    user_id: str = Depends(current_user),
    manager: PreferenceManager = Depends(get_preference_manager),
):
    return [p.to_dict() for p in manager.get_suggested_preferences(user_id, location_id)]


@app.post("/preferences/suggestions")
def suggest_preference(
    body: SuggestPreferenceRequest,
    user_id: str = Depends(current_user),
    manager: PreferenceManager = Depends(get_preference_manager),
):
    preference = manager.suggest_preference(
        user_id, body.slug, body.value, body.confidence, body.location_id, body.evidence
    )
    if preference is None:
        return {"skipped": True, "reason": "previously_rejected"}
    return preference.to_dict()


@app.post("/preferences/suggestions/{preference_id}/accept")
def accept_suggestion(
    preference_id: str,
    user_id: str = Depends(current_user),
    manager: PreferenceManager = Depends(get_preference_manager),
):
    return manager.accept_suggestion(preference_id, user_id).to_dict()


@app.post("/preferences/suggestions/{preference_id}/reject")
def reject_suggestion(
    preference_id: str,
    user_id: str = Depends(current_user),
    manager: PreferenceManager = Depends(get_preference_manager),
):
    return {"rejected": manager.reject_suggestion(preference_id, user_id)}


@app.get("/preferences/{preference_id}")
def get_preference(
    preference_id: str,
    user_id: str = Depends(current_user),
    manager: PreferenceManager = Depends(get_preference_manager),
):
    return manager.get_preference(preference_id, user_id).to_dict()


@app.delete("/preferences/{preference_id}")
def delete_preference(
    preference_id: str,
    user_id: str = Depends(current_user),
    manager: PreferenceManager = Depends(get_preference_manager),
):
    return manager.delete_preference(preference_id, user_id).to_dict()


# =============================================================================
# Document Analysis
# =============================================================================


@app.post("/documents/analyze")
async def analyze_document(
    request: Request,
    filename: str = Query(...),
    location_id: str | None = Query(default=None),
    user_id: str = Depends(current_user),
    analyzer: DocumentAnalyzer = Depends(get_document_analyzer),
):
    """Analyze the raw request body as a document of the request's Content-Type."""
    content = await request.body()
    mime_type = request.headers.get("content-type", "").split(";")[0].strip()
    # Blocks on the AI call, so keep it off the event loop
    result = await run_in_threadpool(
        analyzer.analyze_document, user_id, content, mime_type, filename, location_id
    )
    return result.to_dict()


@app.post("/documents/apply")
def apply_suggestions(
    body: ApplySuggestionsRequest,
    user_id: str = Depends(current_user),
    analyzer: DocumentAnalyzer = Depends(get_document_analyzer),
):
    suggestions = [item.to_suggestion() for item in body.suggestions]
    logger.info(
        f"Applying {len(suggestions)} suggestions from analysis {body.analysis_id} for user {user_id}"
    )
    return analyzer.apply_suggestions(user_id, suggestions, body.location_id).to_dict()


@app.post("/documents/stage")
def stage_suggestions(
    body: ApplySuggestionsRequest,
    user_id: str = Depends(current_user),
    analyzer: DocumentAnalyzer = Depends(get_document_analyzer),
):
    """Keep suggestions as SUGGESTED rows so the user can review them later."""
    suggestions = [item.to_suggestion() for item in body.suggestions]
    logger.info(
        f"Staging {len(suggestions)} suggestions from analysis {body.analysis_id} for user {user_id}"
    )
    return analyzer.stage_suggestions(user_id, suggestions, body.location_id).to_dict()
