from fastapi import APIRouter, File, Form, UploadFile
from fastapi.responses import JSONResponse

from purchase_tracker.metrics import attachments_uploaded_total
from purchase_tracker.storage import upload_attachment

router = APIRouter(prefix="/attachments", tags=["attachments"])


@router.post("")
async def upload(
    file: UploadFile = File(...),
    draft_id: str = Form(..., description="Client-side id of the order being filled in"),
    item_key: str = Form(..., description="Client-side id of the line item"),
) -> JSONResponse:
    """
    Store one file for a line item that is still being filled in.
    The returned metadata goes into the item's `attachments` on submission.
    """
    data = await file.read()
    attachment = await upload_attachment(
        data,
        file_name=file.filename or "file",
        content_type=file.content_type or "",
        draft_id=draft_id,
        item_key=item_key,
    )
    attachments_uploaded_total.labels(file_type=attachment.file_type).inc()
    return JSONResponse(status_code=201, content=attachment.model_dump(mode="json"))
