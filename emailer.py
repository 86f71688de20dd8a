import os
import smtplib
from email.mime.application import MIMEApplication
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from html import escape
from typing import Dict, List, Optional, Sequence

from config import EMAIL_CONFIG
from logger import get_logger

log = get_logger("emailer")

def send_email(to_addrs: List[str], subject: str, html: str, attachments: Optional[Sequence[str]] = None) -> None:
    if not to_addrs:
        log.warning("No recipients for email; skipping.")
        return

    msg = MIMEMultipart("mixed")
    msg["Subject"] = subject
    msg["From"] = EMAIL_CONFIG["from_addr"]
    msg["To"] = ", ".join(to_addrs)

    msg.attach(MIMEText(html, "html", "utf-8"))

    for path in attachments or []:
        with open(path, "rb") as f:
            part = MIMEApplication(f.read(), Name=os.path.basename(path))
        part["Content-Disposition"] = f'attachment; filename="{os.path.basename(path)}"'
        msg.attach(part)

    try:
        with smtplib.SMTP(EMAIL_CONFIG["smtp_server"], EMAIL_CONFIG["smtp_port"]) as server:
            server.starttls()
            if EMAIL_CONFIG["smtp_password"]:
                server.login(EMAIL_CONFIG["smtp_username"], EMAIL_CONFIG["smtp_password"])
            server.sendmail(msg["From"], to_addrs, msg.as_string())
        log.info(f"Email sent: {subject} -> {to_addrs}")
    except Exception as e:
        log.error(f"Failed sending email: {e}")


def _rows(rows: Sequence[Sequence[str]]) -> str:
    return "".join(
        "<tr>" + "".join(f"<td style='padding:2px 8px;'>{escape(str(c))}</td>" for c in r) + "</tr>"
        for r in rows
    )


def upload_report_html(
    run_id: str,
    file_name: str,
    stats: Dict[str, int],
    failed_rows: Sequence[Sequence[str]],
    unmatched_rows: Sequence[Sequence[str]],
) -> str:
    """Operator summary for one shipment upload; rows are already stringified."""
    failed_html = ""
    if failed_rows:
        failed_html = (
            "<h3>등록 실패</h3><table border='1' cellspacing='0'>"
            "<tr><th>주문번호</th><th>송장번호</th><th>오류</th></tr>"
            f"{_rows(failed_rows)}</table>"
        )
    unmatched_html = ""
    if unmatched_rows:
        unmatched_html = (
            "<h3>매칭 실패</h3><table border='1' cellspacing='0'>"
            "<tr><th>행</th><th>송장번호</th><th>수취인</th><th>사유</th><th>분할주문 후보</th></tr>"
            f"{_rows(unmatched_rows)}</table>"
        )

    return f"""
    <div style="font-family:Segoe UI,Arial,sans-serif; max-width:900px;">
      <h2 style="color:#b00020;">Shipment Upload Needs Attention</h2>
      <p><b>Run:</b> {escape(run_id)}</p>
      <p><b>File:</b> {escape(file_name)}</p>
      <p><b>Shipments:</b> {stats.get("total_shipments", 0)} |
         <b>Exact:</b> {stats.get("exact_matches", 0)} |
         <b>Partial:</b> {stats.get("partial_matches", 0)} |
         <b>Unmatched:</b> {stats.get("failed_matches", 0)}</p>
      {failed_html}
      {unmatched_html}
      <p style="color:#666;">Successful rows were registered. Fix the rows above and upload them again.</p>
    </div>
    """


def price_report_html(total: int, completed: int, failed: int, errors: Sequence) -> str:
    items = "".join(
        f"<li>{escape(e.entity_label)} ({escape(e.step_label)}): {escape(e.error_message)}</li>"
        for e in errors
    )
    return f"""
    <div style="font-family:Segoe UI,Arial,sans-serif; max-width:900px;">
      <h2 style="color:#b00020;">Price Update Finished With Errors</h2>
      <p><b>Steps:</b> {total} | <b>Completed:</b> {completed} | <b>Failed:</b> {failed}</p>
      <ul>{items}</ul>
    </div>
    """
