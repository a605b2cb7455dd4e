"""
Rover TLS CLI entry point.

Usage:
  python main.py --check                        # Ensure a usable cert, print its paths
  python main.py --update-address 203.0.113.7   # Publish the primary domain's A/AAAA record
  python main.py --check --domains a.com b.com  # Override managed domains for this run
  python main.py --check --work-dir /var/lib/rover/tls

Exit status is 1 when the refresh or update fails; the service is expected
to fall back to plaintext rather than refuse to start.
"""
from __future__ import annotations

import argparse
import logging
import signal
import sys

import structlog
from pydantic import ValidationError

# ── Logging setup ─────────────────────────────────────────────────────────────

structlog.configure(
    processors=[
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer(),
    ],
    wrapper_class=structlog.make_filtering_bound_logger(logging.INFO),
    context_class=dict,
    logger_factory=structlog.PrintLoggerFactory(),
)
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
log = logging.getLogger(__name__)


# ── Runners ───────────────────────────────────────────────────────────────────


def _make_context(settings):
    """Context bounded by REFRESH_TIMEOUT_SECONDS and cancelled on SIGINT/SIGTERM."""
    from polling import Context

    ctx = Context(timeout=settings.REFRESH_TIMEOUT_SECONDS or None)

    def _cancel(signum, frame) -> None:
        log.warning("Received %s, cancelling", signal.Signals(signum).name)
        ctx.cancel()

    signal.signal(signal.SIGINT, _cancel)
    signal.signal(signal.SIGTERM, _cancel)
    return ctx


def run_check(settings, domains: list[str] | None = None) -> int:
    """Make sure a usable certificate exists for *domains* and print its paths."""
    from ca.client import AcmeError
    from errors import CertLifecycleError
    from lifecycle.controller import CertificateLifecycleController

    effective_domains = domains or settings.MANAGED_DOMAINS
    if not effective_domains:
        log.error("No managed domains configured. Set MANAGED_DOMAINS in .env or pass --domains.")
        return 1

    log.info("Checking certificate for %d domain(s): %s",
             len(effective_domains), ", ".join(effective_domains))

    controller = CertificateLifecycleController.from_settings(settings)
    ctx = _make_context(settings)
    try:
        cert_path, key_path = controller.check_or_refresh(ctx, effective_domains)
    except (CertLifecycleError, AcmeError, OSError, ValueError) as exc:
        log.error("Certificate refresh failed: %s", exc)
        return 1

    print(cert_path)
    print(key_path)
    return 0


def run_update_address(settings, ip: str, domains: list[str] | None = None) -> int:
    """Publish *ip* as the primary domain's address record."""
    from errors import CertLifecycleError
    from lifecycle.controller import CertificateLifecycleController

    controller = CertificateLifecycleController.from_settings(settings)
    ctx = _make_context(settings)
    try:
        controller.update_address_record(ctx, ip, domains)
    except (CertLifecycleError, ValueError) as exc:
        log.error("Address record update failed: %s", exc)
        return 1
    return 0


# ── CLI ───────────────────────────────────────────────────────────────────────


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="ACME DNS-01 certificate and address-record maintenance for the rover",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py --check
  python main.py --check --domains rover.example.com cam.example.com
  python main.py --update-address 203.0.113.7
        """,
    )
    parser.add_argument(
        "--check",
        action="store_true",
        help="Ensure a certificate is present and fresh, refreshing it if needed",
    )
    parser.add_argument(
        "--update-address",
        metavar="IP",
        help="Publish IP as the A (IPv4) or AAAA (IPv6) record of the primary domain",
    )
    parser.add_argument(
        "--domains",
        nargs="+",
        metavar="DOMAIN",
        help="Override managed domains for this run (first is the primary)",
    )
    parser.add_argument(
        "--work-dir",
        metavar="PATH",
        help="Override WORK_DIRECTORY",
    )

    args = parser.parse_args(argv)

    if not args.check and not args.update_address:
        parser.print_help()
        return 1

    from config import load_settings

    overrides = {"WORK_DIRECTORY": args.work_dir} if args.work_dir else {}
    try:
        settings = load_settings(**overrides)
    except ValidationError as exc:
        log.error("Invalid configuration: %s", exc)
        return 1

    status = 0
    if args.update_address:
        status = run_update_address(settings, args.update_address, args.domains)
    if args.check and status == 0:
        status = run_check(settings, args.domains)
    return status


if __name__ == "__main__":
    sys.exit(main())
