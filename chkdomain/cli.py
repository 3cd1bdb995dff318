import argparse
import asyncio
import json
import logging
import sys
import tomllib
from pathlib import Path
from . import Config, DomainChecker, read_domain_file, read_domains

logger = logging.getLogger(__name__)

EPILOG = (
    "If a single '-' param is given, domains will be read from stdin, "
    "separated by whitespace or newlines. "
    "Domain names that are available will be printed to stdout."
)


def build_parser() -> argparse.ArgumentParser:
    defaults = Config()
    parser = argparse.ArgumentParser(
        prog="chkdomain",
        description="Check domain availability with WHOIS lookups",
        epilog=EPILOG,
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("domains", nargs="*", metavar="DOMAIN", help="domains to check, or '-' for stdin")
    parser.add_argument("--debug", action="store_true", default=defaults.debug,
                        help="print debug info (all results, with times)")
    parser.add_argument("--workers", type=int, default=defaults.workers,
                        help="maximum concurrent lookups (0 = one per domain)")
    parser.add_argument("--timeout", type=float, default=defaults.timeout,
                        help="seconds allowed for each connect, write and read")
    parser.add_argument("--server", type=str, default=defaults.server,
                        help="query this HOST[:PORT] instead of <tld>.whois-servers.net")
    parser.add_argument("--whois-suffix", type=str, default=defaults.whois_suffix)
    parser.add_argument("--whois-port", type=int, default=defaults.whois_port)
    parser.add_argument("--progress", action="store_true", default=defaults.progress,
                        help="show a progress bar on stderr")
    parser.add_argument("--log-file", type=Path, default=defaults.log_file)
    parser.add_argument("--input-file", type=Path, default=None, help="read extra domains from a file")
    parser.add_argument("--config", type=Path, help="path to config file", default=None)
    return parser


def parse_args(argv: list[str] | None = None, parser: argparse.ArgumentParser | None = None) -> argparse.Namespace:
    if parser is None:
        parser = build_parser()
    args = parser.parse_args(argv)
    if args.config:
        data = {}
        try:
            text = args.config.read_text()
            if args.config.suffix == ".toml":
                data = tomllib.loads(text)
            else:
                data = json.loads(text)
        except (OSError, ValueError) as e:
            print(f"error reading config {args.config}: {e}", file=sys.stderr)
        for k, v in data.items():
            k = k.replace("-", "_")
            if hasattr(args, k) and k not in ("domains", "config"):
                setattr(args, k, v)
    return args


def setup_logging(debug: bool, log_file: Path | None) -> None:
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(asctime)s %(levelname)s: %(message)s",
        handlers=handlers,
    )


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parse_args(argv, parser)

    domains = list(args.domains)
    if not domains and args.input_file is None:
        parser.print_usage(sys.stderr)
        sys.exit(1)

    if domains == ["-"]:
        try:
            domains = read_domains(sys.stdin)
        except (OSError, UnicodeDecodeError) as e:
            print(f"error reading domains from stdin: {e}", file=sys.stderr)
            sys.exit(1)

    if args.input_file is not None:
        try:
            domains.extend(asyncio.run(read_domain_file(args.input_file)))
        except (OSError, UnicodeDecodeError) as e:
            print(f"error reading domains from {args.input_file}: {e}", file=sys.stderr)
            sys.exit(1)

    cfg = Config(
        workers=args.workers,
        timeout=args.timeout,
        debug=args.debug,
        progress=args.progress,
        whois_suffix=args.whois_suffix,
        whois_port=args.whois_port,
        server=args.server,
        log_file=args.log_file,
    )

    setup_logging(cfg.debug, cfg.log_file)
    if not domains:
        logger.warning("Ingen domæner at tjekke")

    checker = DomainChecker(cfg)
    asyncio.run(checker.run(domains))


if __name__ == "__main__":
    main()
