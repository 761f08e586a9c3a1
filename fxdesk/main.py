from datetime import datetime, timezone

from dotenv import load_dotenv
from fastapi import FastAPI

# Load environment variables from .env file
load_dotenv()

from fxdesk.api.routes import router as api_router  # noqa: E402


def create_app() -> FastAPI:
    app = FastAPI(
        title="fxdesk",
        description="Payment-proof duplicate detection and settlement lifecycle for WhatsApp currency exchange.",
        version="0.1.0",
    )

    @app.get("/health", tags=["health"])
    def health_check():
        """Health check endpoint."""
        return {"status": "healthy", "timestamp": datetime.now(timezone.utc).isoformat()}

    app.include_router(api_router, prefix="/api")

    return app


app = create_app()
