import mimetypes
import sys
import time
import uuid
from pathlib import Path
from typing import List, Optional

import typer

from ember.config import settings
from ember.logging import logger

app = typer.Typer(no_args_is_help=True)


@app.callback()
def main():
    """
    Ember capture pipeline CLI.
    """
    pass


@app.command(name="doctor")
def doctor():
    """
    Check system configuration and environment health.
    """
    logger.info("Running doctor check...")

    print("\n🩺 Ember Doctor\n")

    print(f"Python: {sys.version.split()[0]}")
    print(f"Prefix: {sys.prefix}")

    print("\n[Configuration]")
    print(f"OPENAI_MODEL_EXTRACTION:  {settings.OPENAI_MODEL_EXTRACTION}")
    print(f"OPENAI_MODEL_VISION:      {settings.OPENAI_MODEL_VISION}")
    print(f"JOB_CONCURRENCY:          {settings.JOB_CONCURRENCY}")
    print(f"JOB_RETRIES:              {settings.JOB_RETRIES}")

    api_key_status = "✅ Set" if settings.OPENAI_API_KEY and settings.OPENAI_API_KEY.get_secret_value() else "❌ Missing"
    print(f"OPENAI_API_KEY:           {api_key_status}")

    data_dir = Path(settings.DATA_DIR)
    if data_dir.exists() and data_dir.is_dir():
        print(f"\n[Data Directory]          ✅ Found: {data_dir.absolute()}")
    else:
        print(f"\n[Data Directory]          ❌ Missing: {data_dir.absolute()} (Create this directory if needed)")

    print("\nDoctor check complete.")


db_app = typer.Typer(help="Database management commands.")
app.add_typer(db_app, name="db")


@db_app.command("init")
def init():
    """Create tables and, on PostgreSQL, row-level security policies."""
    from ember.db import init_db
    try:
        init_db()
        logger.info("Database initialized successfully.")
        print("✅ Database initialized.")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        print(f"❌ Failed: {e}")
        raise typer.Exit(code=1)


capture_app = typer.Typer(help="Submit captures and poll their status.")
app.add_typer(capture_app, name="capture")


def _build_runner():
    from ember.ingest.process import CapturePipeline, build_job_runner
    from ember.jobs.admission import InMemoryAdmissionCounter
    return build_job_runner(CapturePipeline(), admission=InMemoryAdmissionCounter())


@capture_app.command("submit")
def capture_submit(
    profile_id: uuid.UUID,
    text_file: Optional[Path] = typer.Option(None, "--text", help="File holding the pasted conversation"),
    screenshots: List[Path] = typer.Option([], "--screenshot", help="Screenshot image, repeatable"),
    platform: Optional[str] = typer.Option(None, help="chatgpt, claude, gemini or other"),
):
    """Submit a capture and process it in this process."""
    from ember.errors import EmberError
    from ember.ingest.submit import submit_capture
    from ember.storage.files import save_screenshot

    runner = _build_runner()
    try:
        payload = {"platform": platform}
        if text_file is not None:
            payload["text"] = text_file.read_text(encoding="utf-8")
        if screenshots:
            payload["image_urls"] = [
                save_screenshot(profile_id, path.read_bytes(), mimetypes.guess_type(path.name)[0] or "")
                for path in screenshots
            ]
        capture_id = submit_capture(profile_id, payload, runner=runner)
        print(f"Capture {capture_id} queued.")
        runner.wait()
    except EmberError as e:
        print(f"❌ {e}")
        raise typer.Exit(code=1)
    finally:
        runner.shutdown()

    capture_status(capture_id, profile_id)


@capture_app.command("status")
def capture_status(capture_id: uuid.UUID, profile_id: uuid.UUID):
    """Show the status of a capture."""
    from ember.errors import CaptureNotFoundError
    from ember.ingest.process import get_capture_status
    try:
        view = get_capture_status(capture_id, profile_id)
    except CaptureNotFoundError as e:
        print(f"❌ {e}")
        raise typer.Exit(code=1)
    print(f"Status:   {view.status.value}")
    print(f"Memories: {view.memory_count}")
    print(f"Created:  {view.created_at.isoformat()}")
    if view.error_message:
        print(f"Error:    {view.error_message}")


jobs_app = typer.Typer(help="Background job maintenance.")
app.add_typer(jobs_app, name="jobs")


@jobs_app.command("sweep")
def sweep(
    limit: int = typer.Option(100, help="Maximum captures to resume"),
    every: Optional[int] = typer.Option(None, help="Keep running and sweep every N seconds"),
):
    """Resume captures parked in queued_for_retry or left stale."""
    from ember.jobs.sweep import RetrySweepScheduler, sweep_retry_pending
    runner = _build_runner()

    if every is not None:
        scheduler = RetrySweepScheduler(runner, interval_seconds=every, limit=limit)
        scheduler.start()
        print(f"🔁 Sweeping every {every}s. Press Ctrl+C to stop.")
        try:
            while True:
                time.sleep(1)
        except KeyboardInterrupt:
            pass
        finally:
            scheduler.shutdown()
            runner.shutdown()
        return

    try:
        jobs = sweep_retry_pending(runner, limit=limit)
        runner.wait()
    finally:
        runner.shutdown()
    print(f"✅ Resumed {len(jobs)} capture(s).")


memories_app = typer.Typer(help="Search memories and build wake prompts.")
app.add_typer(memories_app, name="memories")


@memories_app.command("search")
def search(profile_id: uuid.UUID, query: str, category: Optional[str] = None, limit: int = 20):
    """Search a profile's memories."""
    from ember.models.memory import MemoryCategory
    from ember.repository import search_memories
    from ember.tenant import tenant_session

    with tenant_session(profile_id) as session:
        results = search_memories(
            session, profile_id, query,
            category=MemoryCategory(category) if category else None,
            limit=limit,
        )
    if not results:
        print("No results found.")
        return

    print(f"Found {len(results)} results:")
    for i, memory in enumerate(results, 1):
        print(f"{i}. [{memory.category.value} ★{memory.importance}] {memory.factual_content}")


@memories_app.command("wake")
def wake(
    profile_id: uuid.UUID,
    categories: List[str] = typer.Option([], "--category", help="Category to include, repeatable"),
    budget: Optional[int] = typer.Option(None, help="Token budget"),
):
    """Print a wake prompt for a profile."""
    from ember.memory.wake import build_wake_prompt
    from ember.models.memory import MemoryCategory

    selected = [MemoryCategory(c) for c in categories] or list(MemoryCategory)
    try:
        result = build_wake_prompt(profile_id, selected, budget=budget)
    except ValueError as e:
        print(f"❌ {e}")
        raise typer.Exit(code=1)
    print(result.prompt)
    print(f"\n({result.memory_count} memories, ~{result.token_count} tokens)")


@app.command("purge")
def purge(days: Optional[int] = typer.Option(None, help="Retention window in days")):
    """Permanently delete rows soft-deleted longer ago than the retention window."""
    from ember.storage.soft_delete import purge_expired
    purged = purge_expired(days)
    print(f"✅ Purged {purged['memories']} memories, {purged['captures']} captures, {purged['profiles']} profiles.")


if __name__ == "__main__":
    app()
