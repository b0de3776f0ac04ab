"""
Main application entry point for the tender crawl monitor.
"""

import sys
import json
import signal
import argparse
import logging
from datetime import datetime
from typing import Optional, Dict, Any, List

from tender_monitor.utils.logging import setup_logging, get_logger, get_structured_logger
from tender_monitor.utils.dates import DateRange
from tender_monitor.utils.errors import TenderMonitorError, SessionNotFoundError
from tender_monitor.data.database_factory import DatabaseFactory
from tender_monitor.data.repository import TenderRepository
from tender_monitor.data.session_repository import SessionRepository
from tender_monitor.sessions.registry import SessionRegistry
from tender_monitor.sessions.models import ScrapingProvider, SessionStatus
from tender_monitor.services.versioning import TenderVersioningService
from tender_monitor.services.crawl_service import CrawlService
from config import ConfigManager, SystemConfig


logger = get_logger(__name__)


class TenderMonitorApp:
    """Main application class wiring every component explicitly."""

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize the application.

        Args:
            config_path: Optional path to configuration file
        """
        self.config_path = config_path
        self.config_manager: Optional[ConfigManager] = None
        self.config: Optional[SystemConfig] = None

        self.db_manager = None
        self.tender_repository: Optional[TenderRepository] = None
        self.session_repository: Optional[SessionRepository] = None
        self.registry: Optional[SessionRegistry] = None
        self.versioning: Optional[TenderVersioningService] = None
        self.crawl_service: Optional[CrawlService] = None

        self._shutdown_requested = False
        self._initialized = False

    def install_signal_handlers(self) -> None:
        signal.signal(signal.SIGTERM, self._signal_handler)
        signal.signal(signal.SIGINT, self._signal_handler)

    def _signal_handler(self, signum: int, frame) -> None:
        """Handle shutdown signals."""
        logger.info(f"Received signal {signum}, initiating graceful shutdown")
        self._shutdown_requested = True

    @property
    def shutdown_requested(self) -> bool:
        return self._shutdown_requested

    def initialize(self, log_level: Optional[str] = None) -> None:
        """Load configuration and construct all components."""
        self.config_manager = ConfigManager(self.config_path or "config.json")
        self.config = self.config_manager.load_config()

        setup_logging(log_level or self.config.log_level, self.config.log_file)
        logger.info("Initializing Tender Monitor application")

        self.db_manager = DatabaseFactory.create_database_manager(self.config.database)
        self.db_manager.initialize()

        self.tender_repository = TenderRepository(self.db_manager)
        self.session_repository = SessionRepository(self.db_manager)

        self.registry = SessionRegistry(self.session_repository, self.config.sessions)
        self.registry.start()

        self.versioning = TenderVersioningService(self.tender_repository)
        self.crawl_service = CrawlService(self.registry, self.versioning, self.config)

        self._initialized = True
        logger.info("Application components initialized successfully")

    def stop(self, timeout: float = 30.0) -> None:
        """Stop running crawls, flush sessions and close the database."""
        if not self._initialized:
            return

        logger.info("Stopping Tender Monitor application")
        if self.crawl_service is not None:
            self.crawl_service.shutdown(timeout)
        if self.registry is not None:
            self.registry.shutdown()
        if self.db_manager is not None:
            self.db_manager.close()

        self._initialized = False
        logger.info("Application stopped")

    # Operations

    def discover(self, provider: str, target: Optional[str] = None) -> List[Dict[str, Any]]:
        return [org.to_dict() for org in self.crawl_service.discover(provider, target)]

    def crawl(
        self,
        provider: str,
        organizations: List[str],
        date_range: Optional[DateRange] = None,
        per_org_limit: Optional[int] = None,
        target: Optional[str] = None,
        session_id: Optional[str] = None,
        poll_interval: float = 5.0
    ) -> Dict[str, Any]:
        """Run a crawl in the foreground, logging progress until it ends."""
        session_id = self.crawl_service.create(
            provider,
            target=target,
            organizations=organizations,
            date_range=date_range,
            per_org_limit=per_org_limit,
            session_id=session_id
        )

        progress_log = get_structured_logger("crawl_progress", session_id=session_id, provider=provider)

        while not self.crawl_service.wait(session_id, poll_interval):
            if self._shutdown_requested:
                logger.info(f"Shutdown requested, stopping session {session_id}")
                self.crawl_service.stop(session_id)
                self.crawl_service.wait(session_id, poll_interval)
                break

            session = self.crawl_service.get(session_id)
            if session is not None:
                progress_log.info(
                    "crawl_progress",
                    status=session.status.value,
                    progress_percent=round(session.progress_percent, 1),
                    organizations=f"{session.organizations_scraped}/{session.organizations_found}",
                    tenders=f"{session.tenders_scraped}/{session.tenders_found}",
                    eta=session.estimated_time_remaining_formatted or "-"
                )

        self.registry.flush()
        session = self.crawl_service.get(session_id)
        return session.to_dict() if session else {"id": session_id}

    def list_sessions(self, active_only: bool = False, provider: Optional[str] = None) -> List[Dict[str, Any]]:
        if provider:
            sessions = self.registry.list_by_provider(provider)
            if active_only:
                sessions = [s for s in sessions if s.status is SessionStatus.RUNNING]
        else:
            sessions = self.registry.list_active() if active_only else self.registry.list_all()
        return [session.to_dict() for session in sessions]

    def get_session(self, session_id: str) -> Dict[str, Any]:
        """
        Look up a live or persisted session.

        Raises:
            SessionNotFoundError: If no session has this id
        """
        session = self.registry.get(session_id)
        if session is None:
            raise SessionNotFoundError(f"Session not found: {session_id}", {"session_id": session_id})
        return session.to_dict()

    def list_tenders(self, provider: Optional[str] = None, session_id: Optional[str] = None,
                     limit: int = 50, offset: int = 0) -> Dict[str, Any]:
        records, total = self.crawl_service.list_latest(provider, session_id, limit, offset)
        return {
            "total": total,
            "limit": limit,
            "offset": offset,
            "tenders": [record.to_dict() for record in records],
        }

    def tender_history(self, tender_id: str, tender_ref_no: str) -> List[Dict[str, Any]]:
        return [record.to_dict() for record in self.versioning.get_history(tender_id, tender_ref_no)]


def _parse_day(value: str):
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid date '{value}', expected YYYY-MM-DD")


def create_cli_parser() -> argparse.ArgumentParser:
    """Create command-line interface parser."""
    providers = [p.value for p in ScrapingProvider if p is not ScrapingProvider.CUSTOM]

    parser = argparse.ArgumentParser(
        description='Tender Monitor - e-procurement portal crawl orchestration',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s discover EPROCURE
  %(prog)s crawl EPROCURE --org "Indian Railways" --from 2025-01-01 --to 2025-03-31
  %(prog)s crawl EPROCURE_CPPP --org "Ministry of Defence" --limit 20
  %(prog)s sessions --stats
  %(prog)s tenders --provider EPROCURE --limit 20
  %(prog)s history 2025_DEF_12345_1 "DEF/2025/001"
        """
    )

    parser.add_argument('--config', '-c', type=str, help='Path to configuration file (default: config.json)')
    parser.add_argument('--output', '-o', choices=['json', 'text'], default='text',
                        help='Output format (default: text)')
    parser.add_argument('--log-level', choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
                        help='Override log level from configuration')
    parser.add_argument('--verbose', '-v', action='store_true', help='Equivalent to --log-level DEBUG')

    subparsers = parser.add_subparsers(dest='command', required=True)

    discover = subparsers.add_parser('discover', help='List organisations offered by a portal')
    discover.add_argument('provider', choices=providers)
    discover.add_argument('--target', help='Override the listing URL')

    crawl = subparsers.add_parser('crawl', help='Run a crawl session in the foreground')
    crawl.add_argument('provider', choices=providers)
    crawl.add_argument('--org', dest='organizations', action='append', required=True,
                       help='Organisation name or id (repeatable)')
    crawl.add_argument('--from', dest='start', type=_parse_day, help='First published date (YYYY-MM-DD)')
    crawl.add_argument('--to', dest='end', type=_parse_day, help='Last published date (YYYY-MM-DD)')
    crawl.add_argument('--limit', type=int, help='Maximum tenders per organisation')
    crawl.add_argument('--target', help='Override the listing URL')
    crawl.add_argument('--session-id', help='Use this session id')

    sessions = subparsers.add_parser('sessions', help='Show crawl sessions')
    sessions.add_argument('--active', action='store_true', help='Only running sessions')
    sessions.add_argument('--provider', choices=providers, help='Only sessions of this provider')
    sessions.add_argument('--id', dest='session_id', help='Show a single session')
    sessions.add_argument('--stats', action='store_true', help='Aggregate statistics')
    sessions.add_argument('--overview', action='store_true', help='Provider and status breakdown')

    tenders = subparsers.add_parser('tenders', help='List latest tender versions')
    tenders.add_argument('--provider', choices=providers)
    tenders.add_argument('--session-id')
    tenders.add_argument('--limit', type=int, default=50)
    tenders.add_argument('--offset', type=int, default=0)

    history = subparsers.add_parser('history', help='Show every stored version of a tender')
    history.add_argument('tender_id')
    history.add_argument('tender_ref_no')

    return parser


def format_output(data: Any, format_type: str) -> str:
    """Format output data according to specified format."""
    if format_type == 'json':
        return json.dumps(data, indent=2, default=str, ensure_ascii=False)

    if isinstance(data, dict):
        lines = []
        for key, value in data.items():
            if isinstance(value, dict):
                lines.append(f"{key}:")
                for sub_key, sub_value in value.items():
                    lines.append(f"  {sub_key}: {sub_value}")
            elif isinstance(value, list):
                lines.append(f"{key}: {len(value)} item(s)")
                lines.extend(f"  - {format_output(item, format_type)}" if not isinstance(item, dict)
                             else f"  - {_summary(item)}" for item in value)
            else:
                lines.append(f"{key}: {value}")
        return '\n'.join(lines)
    if isinstance(data, list):
        return '\n'.join(_summary(item) if isinstance(item, dict) else str(item) for item in data)
    return str(data)


def _summary(item: Dict[str, Any]) -> str:
    """One-line rendering of a session, tender or organisation."""
    if "tender_ref_no" in item:
        return (f"{item.get('tender_id')} [{item.get('tender_ref_no')}] v{item.get('version')} "
                f"{item.get('organisation') or ''} - {item.get('work_description') or ''}")
    if "status" in item and "provider" in item:
        return (f"{item.get('id')} {item.get('provider')} {item.get('status')} "
                f"{item.get('progress_percent')}% tenders={item.get('tenders_scraped')}")
    return ", ".join(f"{key}={value}" for key, value in item.items())


def handle_command(app: TenderMonitorApp, args: argparse.Namespace) -> int:
    """Run the selected sub-command and return an exit code."""
    if args.command == 'discover':
        print(format_output(app.discover(args.provider, args.target), args.output))
        return 0

    if args.command == 'crawl':
        date_range = DateRange.from_dates(args.start, args.end) if (args.start or args.end) else None
        result = app.crawl(
            args.provider,
            args.organizations,
            date_range=date_range,
            per_org_limit=args.limit,
            target=args.target,
            session_id=args.session_id
        )
        print(format_output(result, args.output))
        return 1 if result.get("status") == "FAILED" else 0

    if args.command == 'sessions':
        if args.session_id:
            print(format_output(app.get_session(args.session_id), args.output))
        elif args.stats:
            print(format_output(app.registry.get_stats(), args.output))
        elif args.overview:
            print(format_output(app.registry.get_overview(), args.output))
        else:
            print(format_output(app.list_sessions(args.active, args.provider), args.output))
        return 0

    if args.command == 'tenders':
        print(format_output(app.list_tenders(args.provider, args.session_id, args.limit, args.offset),
                            args.output))
        return 0

    if args.command == 'history':
        print(format_output(app.tender_history(args.tender_id, args.tender_ref_no), args.output))
        return 0

    return 2


def main():
    """Main entry point with command-line interface."""
    parser = create_cli_parser()
    args = parser.parse_args()

    log_level = 'DEBUG' if args.verbose else args.log_level

    app = TenderMonitorApp(config_path=args.config)
    app.install_signal_handlers()
    exit_code = 0

    try:
        app.initialize(log_level=log_level)
        exit_code = handle_command(app, args)
    except KeyboardInterrupt:
        logger.info("Received keyboard interrupt")
    except TenderMonitorError as e:
        logger.error(f"Application error: {e}")
        print(format_output({"error": str(e), "details": e.details}, args.output))
        exit_code = 1
    finally:
        try:
            app.stop()
        except TenderMonitorError as e:
            logger.error(f"Error during cleanup: {e}")
            exit_code = 1
        logging.shutdown()

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
