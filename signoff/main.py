"""Main FastAPI application entry point."""
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from signoff.config import LOG_LEVEL
from signoff.database import engine, Base
from signoff.api.routes import router
# Import models to register them with SQLAlchemy Base
from signoff.models.domain import Envelope, Recipient, EnvelopeTemplate
from signoff.models.audit import AuditEvent

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)

# Create database tables
Base.metadata.create_all(bind=engine)

app = FastAPI(
    title="SignOff - Envelope Signing Workflow",
    description="Tracks multi-recipient signing, enforces ordering and expiration, and keeps a hash-chained audit trail.",
    version="0.1.0"
)

# Enable CORS for local development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router, prefix="/api", tags=["Envelopes"])


@app.get("/health")
def health_check():
    return {"status": "healthy", "service": "SignOff"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
