"""
Integrity report read model and its CSV exports.
"""
import csv
from datetime import datetime
from io import StringIO
from typing import Any

from proctorwatch.utils.integrity import integrity_tier
from proctorwatch.utils.recommendations import recommend


HIGH_RISK_THRESHOLD = 70

TYPE_LABELS = {
    "focus_loss": "Focus Loss",
    "no_face": "No Face Detected",
    "multiple_faces": "Multiple Faces",
    "suspicious_object": "Suspicious Objects",
}


def format_duration(seconds: int) -> str:
    """M:SS under an hour, H:MM:SS from an hour up."""
    seconds = max(0, int(seconds))
    hours, remainder = divmod(seconds, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


def build_report(stats: dict[str, Any], generated_at: datetime) -> dict[str, Any]:
    session = stats["session"]
    events = stats["events"]
    tier = integrity_tier(session.integrity_score)
    return {
        "session": session.model_dump(mode="json"),
        "summary": {
            "candidate_name": session.candidate_name,
            "duration": format_duration(stats["duration_seconds"]),
            "total_events": len(events),
            "integrity_score": session.integrity_score,
            "integrity_tier": tier.label,
            "status": session.status,
        },
        "event_breakdown": {
            "by_type": dict(stats["events_by_type"]),
            "by_severity": dict(stats["events_by_severity"]),
        },
        "timeline": [
            {
                "timestamp": event.timestamp.isoformat(),
                "type": event.type,
                "description": event.description,
                "severity": event.severity,
            }
            for event in events
        ],
        "recommendations": recommend(tier, stats["events_by_type"], stats["events_by_severity"]),
        "metadata": {
            "generated_at": generated_at.isoformat(),
            "events_per_minute": round(stats["events_per_minute"], 2),
        },
    }


def report_to_csv(report: dict[str, Any]) -> str:
    session = report["session"]
    summary = report["summary"]
    by_type = report["event_breakdown"]["by_type"]
    by_severity = report["event_breakdown"]["by_severity"]

    buffer = StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(["PROCTORING INTEGRITY REPORT"])
    writer.writerow([])
    writer.writerow(["SESSION INFORMATION"])
    writer.writerow(["Candidate Name", session["candidate_name"]])
    writer.writerow(["Session ID", session["id"]])
    writer.writerow(["Start Time", session["start_time"]])
    writer.writerow(["End Time", session["end_time"] or "N/A"])
    writer.writerow(["Duration", summary["duration"]])
    writer.writerow(["Status", session["status"]])
    writer.writerow(["Integrity Score", f"{session['integrity_score']}%"])
    writer.writerow(["Total Events", session["total_events"]])
    writer.writerow([])

    writer.writerow(["EVENT BREAKDOWN BY TYPE"])
    writer.writerow(["Event Type", "Count"])
    for event_type, label in TYPE_LABELS.items():
        writer.writerow([label, by_type.get(event_type, 0)])
    writer.writerow([])

    writer.writerow(["EVENT BREAKDOWN BY SEVERITY"])
    writer.writerow(["Severity Level", "Count"])
    for severity in ("high", "medium", "low"):
        writer.writerow([severity.capitalize(), by_severity.get(severity, 0)])
    writer.writerow([])

    writer.writerow(["EVENT TIMELINE"])
    writer.writerow(["Timestamp", "Event Type", "Severity", "Description"])
    for item in report["timeline"]:
        writer.writerow([item["timestamp"], item["type"], item["severity"], item["description"]])
    writer.writerow([])

    writer.writerow(["RECOMMENDATIONS"])
    for index, recommendation in enumerate(report["recommendations"], start=1):
        writer.writerow([f"{index}. {recommendation}"])
    writer.writerow([])

    writer.writerow(["REPORT METADATA"])
    writer.writerow(["Generated At", report["metadata"]["generated_at"]])
    writer.writerow(["Events Per Minute", f"{report['metadata']['events_per_minute']:.2f}"])
    return buffer.getvalue()


def summary_csv(reports: list[dict[str, Any]], generated_at: datetime) -> str:
    total_sessions = len(reports)
    completed = sum(1 for r in reports if r["session"]["status"] == "completed")
    average = (
        round(sum(r["session"]["integrity_score"] for r in reports) / total_sessions)
        if total_sessions
        else 0
    )
    total_events = sum(r["session"]["total_events"] for r in reports)
    high_risk = sum(1 for r in reports if r["session"]["integrity_score"] < HIGH_RISK_THRESHOLD)

    buffer = StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(["PROCTORING SYSTEM SUMMARY REPORT"])
    writer.writerow([])
    writer.writerow(["OVERVIEW STATISTICS"])
    writer.writerow(["Total Sessions", total_sessions])
    writer.writerow(["Completed Sessions", completed])
    writer.writerow(["Average Integrity Score", f"{average}%"])
    writer.writerow(["Total Events Across All Sessions", total_events])
    writer.writerow([f"High Risk Sessions (Score < {HIGH_RISK_THRESHOLD}%)", high_risk])
    writer.writerow([])
    writer.writerow(["SESSION DETAILS"])
    writer.writerow(["Candidate Name", "Session ID", "Integrity Score", "Total Events", "Status", "Duration"])
    for r in reports:
        session = r["session"]
        writer.writerow(
            [
                session["candidate_name"],
                session["id"],
                f"{session['integrity_score']}%",
                session["total_events"],
                session["status"],
                r["summary"]["duration"],
            ]
        )
    writer.writerow([])
    writer.writerow(["Generated At", generated_at.isoformat()])
    return buffer.getvalue()


def batch_csv(reports: list[dict[str, Any]]) -> str:
    separator = "\n\n" + "=" * 80 + "\n\n"
    return separator.join(report_to_csv(report) for report in reports)
