# notify.py
from __future__ import annotations

import logging
import mimetypes
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from pathlib import Path
from typing import Callable, List, Optional, Protocol, Sequence, Tuple, Union

from pydantic import BaseModel, Field

from . import http
from .errors import NotificationDeliveryError
from .model import Run, StageStatus
from .settings import Settings
from .ui.console import Console, get_console

logger = logging.getLogger(__name__)

DEFAULT_SUBJECT = "{pipeline} #{build} {status}"


# -------------------- Payload --------------------

class StageSummary(BaseModel):
    name: str
    status: str
    exit_code: Optional[int] = None
    duration: float = 0.0
    reason: str = ""
    error: Optional[str] = None


class Notification(BaseModel):
    run_id: str
    pipeline: str
    build_number: Optional[int] = None
    status: str
    cancelled: bool = False
    stages: List[StageSummary] = Field(default_factory=list)
    log_reference: Optional[str] = None
    error: Optional[str] = None
    subject: str
    body: str
    attachments: List[str] = Field(default_factory=list)


@dataclass(frozen=True)
class NotifySettings:
    """Per-pipeline notification defaults (merged with CLI flags)."""
    recipients: Tuple[str, ...] = ()
    webhooks: Tuple[str, ...] = ()
    subject: str = DEFAULT_SUBJECT


# -------------------- Transports --------------------

class Transport(Protocol):
    def send(
        self,
        recipients: Sequence[str],
        subject: str,
        body: str,
        attachments: Sequence[Path],
        notification: Optional[Notification] = None,
    ) -> None: ...


class EmailTransport:
    """SMTP delivery; attachments are read at send time."""

    def __init__(
        self,
        host: str,
        port: int = 25,
        *,
        sender: str = "stageline@localhost",
        username: Optional[str] = None,
        password: Optional[str] = None,
        starttls: bool = False,
        timeout: float = 30.0,
    ):
        self.host = host
        self.port = port
        self.sender = sender
        self.username = username
        self.password = password
        self.starttls = starttls
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "EmailTransport":
        if not settings.smtp_host:
            raise ValueError("STAGELINE_SMTP_HOST is not set")
        return cls(
            settings.smtp_host,
            settings.smtp_port,
            sender=settings.mail_from,
            username=settings.smtp_user,
            password=settings.smtp_password,
            starttls=settings.smtp_starttls,
        )

    def build_message(self, recipients: Sequence[str], subject: str, body: str, attachments: Sequence[Path]) -> EmailMessage:
        msg = EmailMessage()
        msg["From"] = self.sender
        msg["To"] = ", ".join(recipients)
        msg["Subject"] = subject
        msg.set_content(body)
        for path in attachments:
            ctype, _ = mimetypes.guess_type(path.name)
            maintype, _, subtype = (ctype or "application/octet-stream").partition("/")
            msg.add_attachment(path.read_bytes(), maintype=maintype, subtype=subtype, filename=path.name)
        return msg

    def send(self, recipients, subject, body, attachments, notification=None) -> None:
        if not recipients:
            logger.debug("email: no recipients, nothing to send")
            return
        try:
            msg = self.build_message(recipients, subject, body, attachments)
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
                if self.starttls:
                    smtp.starttls()
                if self.username:
                    smtp.login(self.username, self.password or "")
                smtp.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            raise NotificationDeliveryError(
                f"email delivery failed: {e}", details={"host": f"{self.host}:{self.port}"}
            ) from e


class WebhookTransport:
    """POSTs the Notification as JSON."""

    def __init__(self, url: str, headers: Optional[dict] = None, timeout: float = 10.0):
        self.url = url
        self.headers = dict(headers or {})
        self.timeout = timeout

    def send(self, recipients, subject, body, attachments, notification=None) -> None:
        if notification is not None:
            payload = notification.model_dump(mode="json")
        else:
            payload = {
                "subject": subject,
                "body": body,
                "attachments": [p.name for p in attachments],
            }
        payload["recipients"] = list(recipients)
        try:
            http.request("POST", self.url, data=payload, headers=self.headers, timeout=self.timeout)
        except http.HTTPRequestError as e:
            raise NotificationDeliveryError(
                f"webhook delivery failed: {e}", details={"status": e.status}
            ) from e


class ConsoleTransport:
    def __init__(self, console: Optional[Console] = None):
        self.console = console

    def send(self, recipients, subject, body, attachments, notification=None) -> None:
        (self.console or get_console()).print_notification(subject, body)


# -------------------- Notifier --------------------

LogReference = Union[str, Callable[[Run], str], None]


class Notifier:
    """
    Formats the final status report and hands it to every transport.

    Delivery is best-effort: failures are logged and never raised, so the
    run's recorded outcome is the only thing an operator has to look at.
    """

    def __init__(
        self,
        transports: Sequence[Transport],
        recipients: Sequence[str] = (),
        *,
        log_reference: LogReference = None,
        attachments: Sequence[Union[str, Path]] = (),
        workspace: Union[str, Path] = ".",
        subject: str = DEFAULT_SUBJECT,
    ):
        self.transports = list(transports)
        self.recipients = list(recipients)
        self.log_reference = log_reference
        self.attachments = [Path(a) for a in attachments]
        self.workspace = Path(workspace)
        self.subject = subject

    def _log_ref(self, run: Run) -> Optional[str]:
        ref = self.log_reference
        if ref is None:
            return None
        if callable(ref):
            return ref(run)
        return ref.format(run_id=run.run_id, pipeline=run.pipeline, build=run.build_number or "")

    def _resolve_attachments(self, run: Run) -> List[Path]:
        candidates = list(self.attachments)
        # scan reports produced during the run ride along with the summary
        for result in run.results:
            report = result.outputs().get("report")
            if report:
                candidates.append(Path(report))
        found: List[Path] = []
        for p in candidates:
            path = p if p.is_absolute() else self.workspace / p
            if path.is_file():
                if path not in found:
                    found.append(path)
            else:
                logger.warning("notification attachment %s not found, omitted", path)
        return found

    def build(self, run: Run, attachments: Sequence[Path] = ()) -> Notification:
        status = run.status.value.upper()
        subject = self.subject.format(
            pipeline=run.pipeline,
            build=run.build_number if run.build_number is not None else run.run_id,
            status=status,
            run_id=run.run_id,
        )
        stages = [
            StageSummary(
                name=r.stage,
                status=r.status.value,
                exit_code=r.exit_code,
                duration=round(r.duration, 3),
                reason=r.reason,
                error=r.error.message if r.error else None,
            )
            for r in run.results
        ]
        log_ref = self._log_ref(run)

        width = max([len(s.name) for s in stages] + [5])
        lines = [
            f"Pipeline: {run.pipeline}",
            f"Build: #{run.build_number}" if run.build_number is not None else f"Run: {run.run_id}",
            f"Status: {status}",
            "",
            "Stages:",
        ]
        for s in stages:
            line = f"  {s.name.ljust(width)}  {s.status.upper():<9}  {s.duration:6.1f}s"
            if s.status == StageStatus.SKIPPED.value and s.reason:
                line += f"  ({s.reason})"
            elif s.error:
                line += f"  {s.error}"
            lines.append(line)
        if run.cancelled:
            lines += ["", "The run was cancelled."]
        if run.error is not None:
            lines += ["", f"Run aborted: {run.error.message}"]
        if log_ref:
            lines += ["", f"Logs: {log_ref}"]

        return Notification(
            run_id=run.run_id,
            pipeline=run.pipeline,
            build_number=run.build_number,
            status=status,
            cancelled=run.cancelled,
            stages=stages,
            log_reference=log_ref,
            error=run.error.message if run.error else None,
            subject=subject,
            body="\n".join(lines) + "\n",
            attachments=[p.name for p in attachments],
        )

    def notify(self, run: Run) -> None:
        try:
            attachments = self._resolve_attachments(run)
            note = self.build(run, attachments)
        except Exception:
            logger.exception("could not build notification for run %s", run.run_id)
            return

        for transport in self.transports:
            name = type(transport).__name__
            try:
                transport.send(self.recipients, note.subject, note.body, attachments, notification=note)
            except NotificationDeliveryError as e:
                logger.error("notification via %s failed: %s", name, e.message)
            except Exception:
                logger.exception("notification via %s failed", name)
