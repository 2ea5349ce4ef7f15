from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path

import psycopg2
from dotenv import load_dotenv

from otm_importer.config.loader import ConfigError, load_config
from otm_importer.db.connection import db_connection
from otm_importer.db.repository import PgReferenceStore, PgResultsStore, apply_schema
from otm_importer.logging.error_log import ErrorLogBuffer
from otm_importer.logging.init import log_summary, set_debug, setup_logging
from otm_importer.models.config_models import ImportConfig
from otm_importer.models.outcome import Outcome
from otm_importer.models.reference import ExamDescriptor
from otm_importer.services.grid_entry import GridEntryService, GridError, GridView
from otm_importer.services.orchestrator import ImportPipeline
from otm_importer.services.summary import render_summary_line
from otm_importer.state.drafts import DraftStore
from otm_importer.state.import_context import ImportContextManager
from otm_importer.state.store import JsonFileStore
from otm_importer.tabular.reader import UnreadableArtifactError, decode_text

"""CLI entrypoint.

    otm-import preview FILE              stage an .xlsx/.csv upload, print plan + token
    otm-import commit TOKEN [--dry-run]  commit the staged upload
    otm-import paste [--input PATH] [--commit] [--dry-run]
    otm-import grid load|save --class C (--exam-id N | --study-year Y --kind K --title T --date D)
    otm-import reset | sweep | init-db

Preview and commit run in separate processes, so contexts (and grid drafts)
live in a JsonFileStore under `state_directory`.

Exit codes:
- 0: success
- 2: row errors (preview with errors, or import blocked by them)
- 1: fatal (config, pipeline-level, database or transaction failure)
"""

EXIT_SUCCESS_ALL = 0
EXIT_PARTIAL_FAILURE = 2
EXIT_FATAL = 1

DEFAULT_CONFIG_PATH = Path("config/import.yml")
DEFAULT_SESSION = "cli"

_FLASH_LEVELS = {
    "success": logging.INFO,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "danger": logging.ERROR,
}


def _load_env_file(path: Path, override: bool = True) -> None:
    """Load .env using python-dotenv.

    override=True lets .env values win over the process environment, so the
    PostgreSQL connection settings in .env always take precedence.
    """
    if path.exists():
        load_dotenv(dotenv_path=path, override=override)


def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="otm-import", description="OTM results importer")
    p.add_argument("--debug", action="store_true", help="Enable debug logging")
    p.add_argument("--config", default=str(DEFAULT_CONFIG_PATH), help="Path to import.yml")
    p.add_argument(
        "--session",
        default=os.getenv("OTM_SESSION", DEFAULT_SESSION),
        help="Session key for the import context (default: $OTM_SESSION or 'cli')",
    )
    p.add_argument("--default-exam-id", type=int, default=None, help="Exam used for rows without exam_id")
    p.add_argument("--no-header", action="store_true", help="Data has no header row (positional columns)")

    sub = p.add_subparsers(dest="command", required=True)

    sp = sub.add_parser("preview", help="Stage an upload and show the plan")
    sp.add_argument("file", type=Path)

    sc = sub.add_parser("commit", help="Commit the staged upload")
    sc.add_argument("token")
    sc.add_argument("--dry-run", action="store_true")

    sa = sub.add_parser("paste", help="Preview or import pasted TSV/CSV text")
    sa.add_argument("--input", type=Path, default=None, help="Read text from file instead of stdin")
    sa.add_argument("--commit", action="store_true", help="Import instead of preview")
    sa.add_argument("--dry-run", action="store_true")

    sg = sub.add_parser("grid", help="Manual entry grid for one class and exam session")
    sg.add_argument("action", choices=("load", "save"))
    sg.add_argument("--class", dest="class_code", required=True, help="Class code, e.g. 11A")
    sg.add_argument("--exam-id", type=int, default=None, help="Stored exam session id")
    sg.add_argument("--study-year", type=int, default=0, help="Study year id (exam given by descriptor)")
    sg.add_argument("--kind", default="", help="mock or repetition")
    sg.add_argument("--title", default="")
    sg.add_argument("--date", default="", help="Exam date YYYY-MM-DD")
    sg.add_argument("--attempt", type=int, default=1)
    sg.add_argument("--q", default="", help="Pupil name filter")
    sg.add_argument("--input", type=Path, default=None, help="Posted values as JSON (save; default stdin)")

    sub.add_parser("reset", help="Discard the staged upload of this session")
    sub.add_parser("sweep", help="Delete stale upload artifacts")
    sub.add_parser("init-db", help="Create the importer tables")
    return p.parse_args(argv)


def _report(logger: logging.Logger, outcome: Outcome, preview_limit: int) -> None:
    plan = outcome.plan
    if plan is not None:
        for planned in plan.error_rows()[:preview_limit]:
            logger.warning(f"line {planned.line}: {planned.error_text()}")
        hidden = plan.error_count - preview_limit
        if hidden > 0:
            logger.warning(f"... {hidden} more row(s) with errors")
    for flash in outcome.flashes:
        logger.log(_FLASH_LEVELS[flash.type], flash.text)
    if outcome.token:
        logger.info(f"token={outcome.token}")


def _exit_code(outcome: Outcome) -> int:
    if outcome.plan is not None and outcome.plan.is_blocked:
        return EXIT_PARTIAL_FAILURE
    if not outcome.ok:
        return EXIT_FATAL
    return EXIT_SUCCESS_ALL


def _finish(logger: logging.Logger, outcome: Outcome, cfg: ImportConfig, *, dry_run: bool) -> int:
    _report(logger, outcome, cfg.limits.preview_limit)
    if outcome.plan is not None:
        summary_line = render_summary_line(outcome.plan, outcome.result, dry_run=dry_run)
        # log_summary adds the "SUMMARY " label itself
        log_summary(summary_line[len("SUMMARY "):])
    return _exit_code(outcome)


def _read_paste(path: Path | None) -> str:
    if path is None:
        return sys.stdin.read()
    return decode_text(path.read_bytes())


def _read_posted(path: Path | None) -> dict:
    text = sys.stdin.read() if path is None else decode_text(path.read_bytes())
    data = json.loads(text or "{}")
    if not isinstance(data, dict):
        raise ValueError("posted values must be a JSON object keyed by pupil id")
    return data


def _grid_exam(args: argparse.Namespace) -> dict:
    if args.exam_id:
        return {"otm_exam_id": args.exam_id}
    return {
        "descriptor": ExamDescriptor(args.study_year, args.kind, args.title, args.date, args.attempt),
    }


def _report_grid(logger: logging.Logger, view: GridView) -> None:
    logger.info(f"grid class={view.class_code} exam={view.exam.label()} rows={len(view.rows)}")
    if view.exam.is_pending:
        logger.info("exam session is not stored yet; the first save creates it")
    if view.draft_restored:
        logger.warning("Unsaved draft restored. Fix highlighted fields and save again.")
    for row in view.rows:
        logger.info(f"pupil={row.pupil.id} {row.pupil.display_name} {json.dumps(row.values, ensure_ascii=False)}")
        if row.errors:
            logger.warning(f"pupil={row.pupil.id} errors={json.dumps(row.errors, ensure_ascii=False)}")
    if view.rows_without_majors:
        logger.warning(f"{view.rows_without_majors} pupil(s) have no active major assignment and cannot be saved")


def _run_grid(args: argparse.Namespace, cfg: ImportConfig, drafts: DraftStore, logger: logging.Logger) -> int:
    posted: dict = {}
    if args.action == "save":
        try:
            posted = _read_posted(args.input)
        except (OSError, ValueError) as e:
            logger.error(f"input: {e}")
            return EXIT_FATAL

    with db_connection(cfg.database) as cur:
        service = GridEntryService(PgReferenceStore(cur), PgResultsStore(cur), drafts, ErrorLogBuffer())
        if args.action == "load":
            try:
                view = service.load_grid(args.session, args.class_code, q=args.q, **_grid_exam(args))
            except GridError as e:
                logger.log(_FLASH_LEVELS[e.flash_type], str(e))
                return EXIT_FATAL if e.flash_type == "danger" else EXIT_SUCCESS_ALL
            _report_grid(logger, view)
            return EXIT_SUCCESS_ALL
        outcome = service.save_grid(args.session, args.class_code, posted, q=args.q, **_grid_exam(args))
    return _finish(logger, outcome, cfg, dry_run=False)


def _run_pipeline(args: argparse.Namespace, cfg: ImportConfig, contexts: ImportContextManager) -> Outcome | None:
    """Run a DB-backed command. Returns None for commands without an Outcome."""
    has_header = not args.no_header
    with db_connection(cfg.database) as cur:
        if args.command == "init-db":
            apply_schema(cur)
            return None
        pipeline = ImportPipeline(PgReferenceStore(cur), PgResultsStore(cur), contexts, ErrorLogBuffer())
        if args.command == "preview":
            return pipeline.preview_upload(
                args.session,
                args.file.name,
                args.file.read_bytes(),
                default_exam_id=args.default_exam_id,
                has_header=has_header,
            )
        if args.command == "commit":
            return pipeline.commit(
                args.session,
                args.token,
                dry_run=args.dry_run,
                default_exam_id=args.default_exam_id,
                has_header=has_header,
            )
        text = _read_paste(args.input)
        if args.commit or args.dry_run:
            return pipeline.import_text(
                text, dry_run=args.dry_run, default_exam_id=args.default_exam_id, has_header=has_header
            )
        return pipeline.preview_text(text, default_exam_id=args.default_exam_id, has_header=has_header)


def main(argv: list[str] | None = None) -> int:
    logger = setup_logging()

    # only read sys.argv when argv is None; an empty list must stay empty
    if argv is None:
        argv = sys.argv[1:]
    args = _parse_args(argv)
    _load_env_file(Path(".env"), override=True)

    try:
        cfg = load_config(Path(args.config))
    except ConfigError as e:
        logger.error(f"config: {e}")
        return EXIT_FATAL

    if args.debug:
        set_debug(True)
        logger.debug("debug mode enabled")

    store = JsonFileStore(Path(cfg.state_directory))
    contexts = ImportContextManager(store, Path(cfg.upload_directory), cfg.limits)

    if args.command == "sweep":
        removed = contexts.sweep_artifacts()
        logger.info(f"swept artifacts={removed}")
        return EXIT_SUCCESS_ALL
    if args.command == "reset":
        if contexts.reset(args.session):
            logger.info("Import context cleared.")
        else:
            logger.info("Nothing to clear.")
        return EXIT_SUCCESS_ALL
    if args.command == "grid":
        drafts = DraftStore(store, cfg.limits.draft_ttl_seconds)
        try:
            return _run_grid(args, cfg, drafts, logger)
        except psycopg2.Error as e:
            logger.error(f"database: {e}")
            return EXIT_FATAL
    if args.command == "preview" and not args.file.is_file():
        logger.error(f"file not found: {args.file}")
        return EXIT_FATAL

    try:
        outcome = _run_pipeline(args, cfg, contexts)
    except psycopg2.Error as e:
        logger.error(f"database: {e}")
        return EXIT_FATAL
    except (OSError, UnreadableArtifactError) as e:
        logger.error(f"input: {e}")
        return EXIT_FATAL

    if outcome is None:
        logger.info("schema ready")
        return EXIT_SUCCESS_ALL

    return _finish(logger, outcome, cfg, dry_run=bool(getattr(args, "dry_run", False)))


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
