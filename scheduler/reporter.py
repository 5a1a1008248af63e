# scheduler/reporter.py
import asyncio
import json
import logging
import os

import pandas as pd
from dotenv import load_dotenv

from crawler import db
from providers.models import Source
from utils.alerts import send_alert

load_dotenv()
REPORT_DIR = os.getenv("REPORT_DIR", "./reports")
JOB_COLUMNS = [
    "_id",
    "source",
    "job_type",
    "status",
    "started_at",
    "completed_at",
    "last_cursor",
    "products_scraped",
    "products_updated",
    "error_count",
    "last_error",
]

logger = logging.getLogger("scheduler.reporter")


async def collect_scrape_status(job_limit=10):
    """
    Gather catalog size per source, scrape configs and the most recent jobs.

    Returns:
        dict: ``catalog`` (total and per-source counts), ``configs`` and
            ``recent_jobs``; configs and jobs are validated through
            ScrapeConfig / ScrapeJob and dumped to JSON-ready dicts
    """
    by_source = {}
    for source in (Source.USDA, Source.OPEN_FOOD_FACTS):
        by_source[source.value] = await db.count_products(source.value)
    configs = await db.get_scrape_configs()
    jobs = await db.recent_jobs(job_limit)
    return {
        "generated_at": db.utcnow().isoformat(),
        "catalog": {"total": await db.count_products(), "by_source": by_source},
        "configs": [c.model_dump(mode="json") for c in configs],
        "recent_jobs": [j.model_dump(mode="json", by_alias=True) for j in jobs],
    }


def write_and_send_report(status, report_dir):
    """
    Write the JSON and CSV files for ``status`` and e-mail them.

    Blocking (file I/O, pandas, smtplib); ``generate_scrape_report`` runs it
    in a worker thread.
    """
    os.makedirs(report_dir, exist_ok=True)
    filename_base = f"scrape_report_{status['generated_at'][:10]}"
    json_path = os.path.join(report_dir, f"{filename_base}.json")
    csv_path = os.path.join(report_dir, f"{filename_base}.csv")

    with open(json_path, "w", encoding="utf-8") as f:
        json.dump(status, f, indent=2, default=str)

    jobs = status["recent_jobs"]
    pd.DataFrame(jobs, columns=JOB_COLUMNS).to_csv(csv_path, index=False)
    logger.info(f"Generated scrape report: {json_path}, {csv_path}")

    failed = [j for j in jobs if j.get("status") == "FAILED"]
    subject = (
        f"[Scraper] {len(failed)} failed job(s) in recent runs"
        if failed
        else "[Scraper] Scrape status report"
    )
    body = (
        f"Catalog size: {status['catalog']['total']} products\n"
        + "".join(f"  {k}: {v}\n" for k, v in status["catalog"]["by_source"].items())
        + f"\nReport generated at: {status['generated_at']}\n\nRecent jobs:\n"
    )
    for job in jobs:
        body += (
            f"- {job.get('source')} {job.get('job_type')} {job.get('status')}: "
            f"{job.get('products_updated', 0)} updated, {job.get('error_count', 0)} errors\n"
        )
    body += "\nAttached are the JSON and CSV reports.\n"

    sent = send_alert(subject, body, attachments=[json_path, csv_path])
    return {"json_path": json_path, "csv_path": csv_path, "sent": sent}


async def generate_scrape_report():
    """
    Write the scrape status report and e-mail it to the operator.

    Output Files:
        - {REPORT_DIR}/scrape_report_{YYYY-MM-DD}.json: full status snapshot
        - {REPORT_DIR}/scrape_report_{YYYY-MM-DD}.csv: one row per recent job

    Returns:
        dict: ``json_path``, ``csv_path`` and ``sent`` (whether the e-mail
            went out)

    Note:
        Running twice on the same day overwrites that day's files. Writing
        and sending happen in a worker thread so the event loop keeps
        serving requests.
    """
    status = await collect_scrape_status()
    return await asyncio.to_thread(write_and_send_report, status, REPORT_DIR)
