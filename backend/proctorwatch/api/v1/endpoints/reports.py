import logging

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import Response, StreamingResponse
from starlette.concurrency import run_in_threadpool

from proctorwatch.api.deps import get_lifecycle
from proctorwatch.core.store import utcnow
from proctorwatch.schemas.session import BatchReportRequest
from proctorwatch.services.lifecycle import SessionLifecycleManager
from proctorwatch.utils.pdf_generator import generate_integrity_report
from proctorwatch.utils.report import batch_csv, report_to_csv, summary_csv


router = APIRouter(prefix="/reports", tags=["reports"])
logger = logging.getLogger(__name__)


@router.get("/{session_id}")
async def get_report(
    session_id: str,
    lifecycle: SessionLifecycleManager = Depends(get_lifecycle),
) -> dict:
    report = await lifecycle.build_report(session_id)
    return {"success": True, "report": report}


@router.get("/{session_id}/csv")
async def download_report_csv(
    session_id: str,
    lifecycle: SessionLifecycleManager = Depends(get_lifecycle),
) -> Response:
    report = await lifecycle.build_report(session_id)
    return Response(
        report_to_csv(report),
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename=proctoring-report-{session_id}.csv"},
    )


@router.get("/{session_id}/pdf")
async def download_report_pdf(
    session_id: str,
    lifecycle: SessionLifecycleManager = Depends(get_lifecycle),
) -> StreamingResponse:
    """Generate and download the PDF integrity report for a session"""
    report = await lifecycle.build_report(session_id)
    pdf_buffer = await run_in_threadpool(generate_integrity_report, report)
    logger.info("PDF report generated", extra={"session_id": session_id})
    return StreamingResponse(
        pdf_buffer,
        media_type="application/pdf",
        headers={"Content-Disposition": f"attachment; filename=proctoring-report-{session_id}.pdf"},
    )


@router.post("/batch")
async def batch_reports(
    payload: BatchReportRequest,
    lifecycle: SessionLifecycleManager = Depends(get_lifecycle),
) -> Response:
    reports = await lifecycle.build_reports(payload.session_ids)
    if not reports:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No valid sessions found")

    now = utcnow()
    if payload.format == "summary":
        content = summary_csv(reports, generated_at=now)
        filename = f"batch-summary-report-{now.date().isoformat()}.csv"
    else:
        content = batch_csv(reports)
        filename = f"batch-reports-{now.date().isoformat()}.csv"
    logger.info(
        "Batch report generated",
        extra={"format": payload.format, "requested": len(payload.session_ids), "found": len(reports)},
    )
    return Response(
        content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
