from contextlib import asynccontextmanager
from datetime import timezone
import os
import sys
from typing import Optional

from fastapi import FastAPI, HTTPException, Request

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from pvptracker.database import DEFAULT_DB_PATH, Database
from pvptracker.errors import StorageError
from pvptracker.stats import HourlyStatsReporter


def create_app(db_path: Optional[str] = None) -> FastAPI:
    """Read-only JSON view over the tracked history. The database opens on startup."""
    db_path = db_path or os.environ.get("PVP_DB_PATH", DEFAULT_DB_PATH)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.db = Database(db_path)
        print(f"[DB] Using database at: {os.path.abspath(app.state.db.db_path)}")
        try:
            yield
        finally:
            app.state.db.close()

    app = FastAPI(title="PvP Rating Tracker", lifespan=lifespan)

    def _character_id(request: Request, region: str, realm: str, name: str) -> int:
        character_id = request.app.state.db.find_character(name, realm, region)
        if character_id is None:
            raise HTTPException(status_code=404, detail=f"Character '{name}-{realm}' ({region}) is not tracked")
        return character_id

    @app.get("/api/health")
    async def health() -> dict:
        return {"status": "ok"}

    @app.get("/api/characters")
    async def characters(request: Request) -> dict:
        try:
            rows = request.app.state.db.get_all_characters()
        except StorageError as e:
            raise HTTPException(status_code=500, detail=f"Failed to list characters: {str(e)}")
        return {"characters": rows, "count": len(rows)}

    @app.get("/api/characters/{region}/{realm}/{name}/history")
    async def history(request: Request, region: str, realm: str, name: str, bracket: Optional[str] = None) -> dict:
        character_id = _character_id(request, region, realm, name)
        try:
            changes = request.app.state.db.get_rating_changes(character_id, bracket)
        except StorageError as e:
            raise HTTPException(status_code=500, detail=f"Failed to load rating history: {str(e)}")
        return {
            "character_id": character_id,
            "bracket": bracket,
            "changes": [c.to_dict() for c in changes],
            "summary": HourlyStatsReporter.summarize(changes),
        }

    @app.get("/api/characters/{region}/{realm}/{name}/hourly")
    async def hourly(request: Request, region: str, realm: str, name: str, bracket: Optional[str] = None) -> dict:
        character_id = _character_id(request, region, realm, name)
        try:
            changes = request.app.state.db.get_rating_changes(character_id, bracket)
        except StorageError as e:
            raise HTTPException(status_code=500, detail=f"Failed to load rating history: {str(e)}")
        # Server-side hours are reported in UTC so clients can shift them.
        buckets = HourlyStatsReporter(tz=timezone.utc).aggregate(changes)
        return {
            "character_id": character_id,
            "bracket": bracket,
            "timezone": "UTC",
            "hours": [b.to_dict() for b in buckets],
        }

    return app


if __name__ == "__main__":
    import uvicorn

    print("Starting PvP Tracker Web Server...")
    print("Open http://localhost:5000/api/health in your browser")
    uvicorn.run(create_app(), host="127.0.0.1", port=5000)
