"""Rendering of a RunReport into a notification message.

Output depends only on the report and the run context, so the same run
always renders to the same text.
"""

from __future__ import annotations

from pgbackup.alerts.protocol import MailMessage
from pgbackup.core.models import RunContext, RunReport, Verdict

SUBJECTS: dict[Verdict, str] = {
    Verdict.SUCCESS: "SUCCESS: PostgreSQL Backup and Upload",
    Verdict.PREFLIGHT_FAILURE: "FAILURE: PostgreSQL Backup Preflight",
    Verdict.BACKUP_FAILURE: "FAILURE: PostgreSQL Backup Task",
    Verdict.UPLOAD_FAILURE: "FAILURE: PostgreSQL Backup Upload",
}

_UNITS = ("B", "KiB", "MiB", "GiB", "TiB")


def format_size(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    value = float(size)
    for unit in _UNITS[1:]:
        value /= 1024
        if value < 1024:
            break
    return f"{value:.1f} {unit}"


def _headline(report: RunReport, ctx: RunContext) -> str:
    if report.verdict is Verdict.SUCCESS:
        names = [a.name for a in report.artifacts]
        return "Successfully created and uploaded: " + ", ".join(names)
    if report.verdict is Verdict.UPLOAD_FAILURE:
        return (
            f"Backups were created locally but failed to upload to {ctx.remote}. "
            "Check the rclone output in the log."
        )
    if report.verdict is Verdict.PREFLIGHT_FAILURE:
        return f"Backup not started: {report.reason}"
    return f"Backup FAILED: {report.reason}"


def render_subject(report: RunReport, ctx: RunContext) -> str:
    return f"{SUBJECTS[report.verdict]} ({ctx.database}@{ctx.host})"


def render_body(report: RunReport, ctx: RunContext) -> str:
    lines = [
        _headline(report, ctx),
        "",
        f"Run:       {report.run_id} ({ctx.timestamp})",
        f"Database:  {ctx.database} on {ctx.host}:{ctx.port}",
        f"Started:   {report.started_at:%Y-%m-%d %H:%M:%S}",
        f"Finished:  {report.finished_at:%Y-%m-%d %H:%M:%S}",
        f"Verdict:   {report.verdict.name} (exit code {report.exit_code})",
    ]
    if report.reason:
        lines.append(f"Reason:    {report.reason}")

    lines += ["", "Tasks:"]
    if not report.task_outcomes:
        lines.append("  (no tasks ran)")
    for outcome in report.task_outcomes:
        if outcome.succeeded:
            lines.append(
                f"  {outcome.name:<10} {outcome.status.value:<10} "
                f"{format_size(outcome.size_bytes):>10}  {outcome.duration_seconds:.1f}s"
            )
            for artifact in outcome.artifacts:
                lines.append(f"      {artifact.kind.value:<9} {artifact.path} ({format_size(artifact.size_bytes)})")
        else:
            lines.append(f"  {outcome.name:<10} {outcome.status.value:<10} {outcome.error}")

    lines += ["", f"Uploads to {ctx.remote or '(no remote)'}:"]
    if not report.upload_outcomes:
        lines.append("  (not attempted)")
    for upload in report.upload_outcomes:
        attempts = "attempt" if upload.attempts == 1 else "attempts"
        line = f"  {upload.artifact.name:<40} {upload.status.value:<10} ({upload.attempts} {attempts})"
        if upload.error:
            line = f"{line} {upload.error}"
        lines.append(line)

    if report.log_tail:
        lines += ["", f"Last {len(report.log_tail)} log lines:"]
        lines += [f"  {line}" for line in report.log_tail]

    return "\n".join(lines) + "\n"


def render_report(report: RunReport, ctx: RunContext, sender: str = "pgbackup@localhost") -> MailMessage:
    """Render ``report`` into a message addressed to ``ctx.recipients``."""
    return MailMessage(
        subject=render_subject(report, ctx),
        body=render_body(report, ctx),
        recipients=ctx.recipients,
        sender=sender,
    )
