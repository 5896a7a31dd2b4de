"""Daily scan API routes."""

from fastapi import APIRouter, File, Form, UploadFile

from bodyscan_api.api.dependencies import PipelineDep
from bodyscan_api.core.exceptions import ValidationError
from bodyscan_api.models.scan import Scan, ScanAngle, ScanSubmitResponse, UserContext

router = APIRouter()


async def _read_photo(angle: ScanAngle, file: UploadFile) -> bytes:
    try:
        return await file.read()
    except Exception as e:
        raise ValidationError(
            f"Failed to read {angle.value} photo: {e}",
            details={"angle": angle.value},
        ) from e


@router.post("", response_model=ScanSubmitResponse, status_code=202)
async def submit_scan(
    pipeline: PipelineDep,
    user_id: str = Form(..., description="Owner of the scan"),
    date: str = Form(..., description="User-local calendar day (YYYY-MM-DD)"),
    weight_lb: float = Form(..., description="Scale reading in pounds"),
    front: UploadFile = File(..., description="Front view photo (JPEG)"),
    back: UploadFile = File(..., description="Back view photo (JPEG)"),
    left: UploadFile = File(..., description="Left side photo (JPEG)"),
    right: UploadFile = File(..., description="Right side photo (JPEG)"),
    notes: str | None = Form(None),
    age: int | None = Form(None),
    gender: str | None = Form(None),
    height_cm: float | None = Form(None),
    fitness_goal: str | None = Form(None),
):
    """
    Submit a daily scan.

    The scan record is created immediately and processed in the background.
    Poll `GET /scans/{scan_id}` for progress.

    - **front/back/left/right**: One photo per angle
    - **weight_lb**: Required, must be greater than 0
    - **age/gender/height_cm/fitness_goal**: Optional estimator context
    """
    files = {
        ScanAngle.FRONT: front,
        ScanAngle.BACK: back,
        ScanAngle.LEFT: left,
        ScanAngle.RIGHT: right,
    }
    photos = {angle: await _read_photo(angle, file) for angle, file in files.items()}

    context = None
    if any(v is not None for v in (age, gender, height_cm, fitness_goal)):
        try:
            context = UserContext(
                age=age,
                gender=gender,
                height_cm=height_cm,
                fitness_goal=fitness_goal,
            )
        except ValueError as e:
            raise ValidationError(f"Invalid user context: {e}") from e

    scan_id = await pipeline.submit_scan(
        user_id=user_id,
        date=date,
        weight_lb=weight_lb,
        photos_by_angle=photos,
        notes=notes,
        context=context,
    )
    scan = await pipeline.get_scan(scan_id)
    return ScanSubmitResponse(scan_id=scan_id, status=scan.status)


@router.get("/{scan_id}", response_model=Scan)
async def get_scan(scan_id: str, pipeline: PipelineDep):
    """Get a scan record, including its status and any results so far."""
    return await pipeline.get_scan(scan_id)


@router.post("/{scan_id}/resume", response_model=Scan)
async def resume_scan(scan_id: str, pipeline: PipelineDep):
    """
    Run the remaining stages of a scan now.

    Safe to call on a scan in any state; terminal scans are returned as-is.
    """
    return await pipeline.process_scan(scan_id)


@router.delete("/{scan_id}", status_code=204)
async def delete_scan(scan_id: str, user_id: str, pipeline: PipelineDep):
    """Delete a scan and its photos. The user's streak is rebuilt afterwards."""
    await pipeline.delete_scan(scan_id, user_id)
