# delivery/api/documents.py
from fastapi import APIRouter, Request, HTTPException, status
from fastapi.responses import StreamingResponse
from cardpress.delivery.schemas.body import RenderRequest
from cardpress.domain.errors import InvalidGeometry
from cardpress.domain.models import DocumentKind
from cardpress.domain.render_service import suggested_filename
from cardpress.infrastructure.pdf.stream_writer import CONTENT_TYPE
from cardpress.infrastructure.sinks import StreamSink
import asyncio
import logging
import traceback

router = APIRouter()
logger = logging.getLogger("uvicorn.error")


def _log_outcome(task: asyncio.Task) -> None:
    if task.cancelled():
        logger.warning("Render task cancelled (client disconnected).")
        return
    error = task.exception()
    if error is not None:
        logger.error(f"Render task failed: {type(error).__name__}: {error}")


@router.post("/documents/{kind}")
async def render_document(kind: DocumentKind, body: RenderRequest, request: Request):
    filename = suggested_filename(kind)
    logger.info(f"=== ENDPOINT START {filename}: {len(body.entities)} entities ===")

    try:
        service = getattr(request.app.state, "render_service", None)
        if service is None:
            logger.error(f"Service not initialized for {filename}")
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Service is not ready. Please try again in a moment.",
            )

        # Abort fast if the client already closed
        if await request.is_disconnected():
            logger.warning(f"[{filename}] Client already disconnected")
            raise HTTPException(status_code=499, detail="Client closed request")

        job = body.to_job(kind)
        try:
            program = service.prepare(job)
        except InvalidGeometry as e:
            # Rejected before any byte of the document exists.
            raise HTTPException(status_code=422, detail=str(e))

        sink = StreamSink()
        task = asyncio.create_task(service.render(job, sink, program))
        task.add_done_callback(_log_outcome)
        return StreamingResponse(
            sink.chunks(task),
            media_type=CONTENT_TYPE,
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"=== ENDPOINT ERROR for {filename}: {e} ===\n{traceback.format_exc()}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error.",
        )
