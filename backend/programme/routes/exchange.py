"""
Export/import routes.
"""

from typing import Literal

from fastapi import APIRouter, Depends, Request, Response

from programme.exceptions import ImportFormatError
from programme.logging_config import get_logger
from programme.registry import get_programme, open_programme
from programme.schemas import ImportResponse
from programme.services.codec import MEDIA_TYPES
from programme.services.engine import ProgrammeEngine

logger = get_logger(__name__)

router = APIRouter()

Format = Literal["json", "xml", "csv"]


@router.get("/export")
async def export_project(
    format: Format = "json",
    include_baselines: bool = True,
    engine: ProgrammeEngine = Depends(get_programme),
) -> Response:
    """Download the programme as JSON (full fidelity), XML or CSV."""
    content = await engine.export(format, include_baselines)
    filename = f"{engine.project_id}.{format}"
    logger.info(f"Exported project={engine.project_id} as {format}")
    return Response(
        content=content,
        media_type=MEDIA_TYPES[format],
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.post("/import", response_model=ImportResponse)
async def import_project(
    request: Request,
    format: Format = "json",
    engine: ProgrammeEngine = Depends(open_programme),
) -> ImportResponse:
    """
    Replace the project's tasks with an uploaded document.

    Baselines included in a JSON document are recreated under this project,
    subject to the baseline quota. Every problem in the document is reported
    (422) and nothing is changed unless the whole import is valid.
    """
    body = await request.body()
    try:
        payload = body.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise ImportFormatError(format, [
            {"loc": ["body", str(e.start)], "msg": "invalid UTF-8", "type": "encoding_error"},
        ])
    imported, baselines = await engine.import_document(format, payload)
    return ImportResponse(
        project_id=engine.project_id,
        format=format,
        imported_tasks=len(imported.store),
        imported_baselines=len(baselines),
        project_name=imported.project_name,
    )
