"""
Extension Threat Analyzer - Web Interface
Local FastAPI service exposing the analysis engine over HTTP
"""

import sys
from pathlib import Path
from typing import List, Optional

# Get project root directory
PROJECT_ROOT = Path(__file__).parent.parent.resolve()

# Add src directory to path for imports
sys.path.insert(0, str(PROJECT_ROOT / 'src'))

from fastapi import FastAPI, File, HTTPException, UploadFile
from fastapi.responses import HTMLResponse, JSONResponse
from pydantic import BaseModel, Field
import uvicorn

from analyzer import ExtensionThreatAnalyzer
from config import load_settings
from errors import InputTooLarge
from report_generator import ReportGenerator
from result_cache import ResultCache

settings = load_settings()
engine = ExtensionThreatAnalyzer(settings, cache=ResultCache(settings.cache_capacity), verbose=False)
reporter = ReportGenerator(settings.reports_dir)

app = FastAPI(
    title="Extension Threat Analyzer",
    description="Offline threat classification for browser extensions",
    version="1.0.0"
)


class ScriptPayload(BaseModel):
    name: str = 'script.js'
    text: str


class AnalysisRequest(BaseModel):
    manifest: Optional[dict] = None
    scripts: List[ScriptPayload] = Field(default_factory=list)
    artifact_id: Optional[str] = None


def _too_large(e):
    return HTTPException(status_code=413, detail=e.to_dict())


@app.get("/health")
async def health():
    return {"status": "ok", "cache": engine.cache.stats()}


@app.post("/api/analyze", response_class=JSONResponse)
def analyze(req: AnalysisRequest):
    """Analyze a manifest and/or script sources sent as JSON"""
    if req.manifest is None and not req.scripts:
        raise HTTPException(status_code=422, detail="Supply a manifest, scripts, or both")

    try:
        result = engine.analyze(
            manifest=req.manifest,
            scripts=[(s.name, s.text) for s in req.scripts],
            artifact_id=req.artifact_id,
        )
    except InputTooLarge as e:
        raise _too_large(e)

    return result


@app.post("/api/analyze/package", response_class=JSONResponse)
async def analyze_package(file: UploadFile = File(...)):
    """Analyze an uploaded .crx or .zip"""
    data = await file.read(settings.max_package_bytes + 1)

    try:
        result = engine.analyze(package_bytes=data, artifact_id=Path(file.filename or 'upload').stem)
    except InputTooLarge as e:
        raise _too_large(e)

    package = result['details']['package']
    # Nothing recoverable: a typed rejection, still carrying the fail-safe verdict
    if package['mode'] == 'failed':
        return JSONResponse(status_code=422, content={'detail': package['parse_error'], 'result': result})
    return result


@app.post("/api/report", response_class=HTMLResponse)
def render_report(req: AnalysisRequest):
    """Analyze and return the HTML report"""
    return HTMLResponse(reporter.render_html(analyze(req)))


if __name__ == "__main__":
    print("\n" + "=" * 50)
    print("Extension Threat Analyzer - Web Interface")
    print("=" * 50)
    print(f"\nProject root: {PROJECT_ROOT}")
    print("\nStarting server at http://127.0.0.1:8000\n")

    uvicorn.run(app, host="127.0.0.1", port=8000)
