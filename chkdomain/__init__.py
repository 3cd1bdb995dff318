#!/usr/bin/env python3
import asyncio
import contextlib
import ipaddress
import logging
import re
import socket
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import AsyncIterator, Sequence, TextIO

import aiodns
import aiofiles
from tqdm import tqdm

logger = logging.getLogger(__name__)

AVAILABLE_RE = re.compile(r"\b(is not registered|is available|no match for|not found)\b")
DOMAIN_RE = re.compile(
    r"(?:[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?\.)+[a-z]{2,}",
    re.IGNORECASE | re.ASCII,
)
READ_CHUNK = 1024


def now_ms() -> int:
    return time.time_ns() // 1_000_000


@dataclass
class Config:
    """Configuration options for the domain checker."""

    workers: int = 100
    timeout: float | None = None
    debug: bool = False
    progress: bool = False
    whois_suffix: str = "whois-servers.net"
    whois_port: int = 43
    server: str | None = None
    log_file: Path | None = None
    start_ms: int = field(default_factory=now_ms)

# --- KONSTANTER --- #
DEFAULT_CONFIG = Config()


# --- Fejl --- #
class WhoisError(Exception):
    """Base class for failures of a single domain lookup."""

    def __init__(self, domain: str, message: str) -> None:
        super().__init__(message)
        self.domain = domain


class InvalidDomainError(WhoisError):
    """The domain failed syntax validation and was never queried."""


class WhoisConnectionError(WhoisError):
    """Resolving or connecting to the WHOIS server failed."""


class WhoisWriteError(WhoisError):
    """The query could not be sent after connecting."""


class WhoisReadError(WhoisError):
    """The response stream broke before a clean end-of-stream."""


# --- Resultater --- #
@dataclass(frozen=True)
class Success:
    """A completed lookup with its classification and raw response."""

    domain: str
    available: bool
    output: str


@dataclass(frozen=True)
class Failure:
    """A lookup that ended in an error."""

    domain: str
    error: Exception


Result = Success | Failure


# --- Hjælpefunktioner --- #
def is_valid_domain(domain: str) -> bool:
    """Check whether a string is a syntactically acceptable domain name.

    Args:
        domain (str): Candidate domain.

    Returns:
        bool: True if every label is 1-63 alphanumerics/hyphens and the
        final label is at least two letters.
    """
    return DOMAIN_RE.fullmatch(domain) is not None


def whois_server(domain: str, config: Config | None = None) -> str:
    """Return the conventional WHOIS server, including port, for a domain.

    Domains with more than two labels use the last two labels as the TLD,
    so ``example.co.uk`` maps to ``co.uk.whois-servers.net:43``.
    """
    if config is None:
        config = DEFAULT_CONFIG
    labels = domain.split(".")
    tld = labels[-1]
    if len(labels) > 2:
        tld = f"{labels[-2]}.{tld}"
    return f"{tld}.{config.whois_suffix}:{config.whois_port}"


def is_available(whois_text: str) -> bool:
    """Check whether a WHOIS response says the domain is not registered.

    Args:
        whois_text (str): Raw WHOIS response.

    Returns:
        bool: True if a known "not registered" phrase occurs as whole words.
    """
    return AVAILABLE_RE.search(whois_text.lower()) is not None


def split_server(server: str, default_port: int) -> tuple[str, int]:
    """Split ``HOST[:PORT]`` into host and port.

    IPv6 addresses are accepted bare (``::1``) or bracketed with an
    optional port (``[::1]:43``).
    """
    if server.startswith("["):
        host, _, rest = server[1:].partition("]")
        port = rest.removeprefix(":")
        return host, int(port) if port else default_port
    if server.count(":") > 1:
        return server, default_port
    host, sep, port = server.rpartition(":")
    if not sep:
        return server, default_port
    return host, int(port)


def describe_error(e: BaseException, timeout: float | None) -> str:
    if isinstance(e, TimeoutError):
        return f"timed out after {timeout}s"
    return str(e) or type(e).__name__


async def resolve_host(
    host: str, resolver: aiodns.DNSResolver | None = None, timeout: float | None = None
) -> str:
    """Resolve a WHOIS server host name to an IPv4 address.

    IP literals are returned unchanged.
    """
    with contextlib.suppress(ValueError):
        ipaddress.ip_address(host)
        return host
    if resolver is None:
        resolver = aiodns.DNSResolver(timeout=timeout)
    result = await resolver.gethostbyname(host, socket.AF_INET)
    return result.addresses[0]


async def whois_query(
    domain: str,
    config: Config | None = None,
    resolver: aiodns.DNSResolver | None = None,
) -> str:
    """Run one WHOIS query for ``domain`` and return the full response text.

    Args:
        domain: Domain to look up.
        config: Server and timeout settings.
        resolver: Shared ``aiodns`` resolver for the WHOIS host name.

    Returns:
        Everything the server sent before closing the connection.

    Raises:
        InvalidDomainError: The domain failed validation.
        WhoisConnectionError: The server could not be resolved or reached.
        WhoisWriteError: The query could not be sent.
        WhoisReadError: Reading the response failed.
    """
    if config is None:
        config = DEFAULT_CONFIG
    if not is_valid_domain(domain):
        raise InvalidDomainError(domain, f"invalid domain: {domain}")

    server = config.server or whois_server(domain, config)
    host, port = split_server(server, config.whois_port)
    timeout = config.timeout

    try:
        address = await asyncio.wait_for(resolve_host(host, resolver, timeout), timeout)
        reader, writer = await asyncio.wait_for(
            asyncio.open_connection(address, port), timeout
        )
    except (aiodns.error.DNSError, OSError) as e:
        reason = describe_error(e, timeout)
        raise WhoisConnectionError(domain, f"error connecting to {server}: {reason}") from e

    try:
        try:
            writer.write(f"{domain}\r\n".encode())
            await asyncio.wait_for(writer.drain(), timeout)
        except OSError as e:
            reason = describe_error(e, timeout)
            raise WhoisWriteError(domain, f"error writing to {server}: {reason}") from e

        chunks: list[bytes] = []
        while True:
            try:
                chunk = await asyncio.wait_for(reader.read(READ_CHUNK), timeout)
            except OSError as e:
                reason = describe_error(e, timeout)
                raise WhoisReadError(domain, f"error reading from {server}: {reason}") from e
            if not chunk:
                break
            chunks.append(chunk)
    finally:
        writer.close()
        with contextlib.suppress(OSError):
            await writer.wait_closed()

    return b"".join(chunks).decode("utf-8", errors="replace")


def format_result(
    result: Result, debug: bool = False, start_ms: int = 0, at_ms: int | None = None
) -> str | None:
    """Render a result as an output line, or ``None`` if it is not printed.

    Args:
        result: Outcome of one lookup.
        debug: Print every domain with classification and elapsed time.
        start_ms: Program start, in milliseconds since the epoch.
        at_ms: Time of reporting; defaults to now.
    """
    if isinstance(result, Failure):
        return f"{result.domain}: {result.error}"
    if not debug:
        return result.domain if result.available else None
    if at_ms is None:
        at_ms = now_ms()
    status = "AVAILABLE" if result.available else "UNAVAILABLE"
    return f"[{at_ms - start_ms}]\t{status}\t{result.domain}"


def read_domains(stream: TextIO) -> list[str]:
    """Read whitespace separated domain tokens until end of stream."""
    return stream.read().split()


async def read_domain_file(path: Path) -> list[str]:
    """Read whitespace separated domain tokens from a file asynchronously."""
    async with aiofiles.open(path, "r") as f:
        return (await f.read()).split()


@dataclass
class Job:
    """A pending lookup for one domain, publishing exactly one result."""

    domain: str
    results: asyncio.Queue

    async def run(self, config: Config, resolver: aiodns.DNSResolver | None = None) -> None:
        try:
            output = await whois_query(self.domain, config, resolver)
        except WhoisError as e:
            logger.debug(f"Opslag fejlede for {self.domain}: {e}")
            result: Result = Failure(self.domain, e)
        except Exception as e:
            logger.exception(f"Uventet fejl for {self.domain}")
            result = Failure(self.domain, e)
        else:
            result = Success(self.domain, is_available(output), output)
        await self.results.put(result)


class DomainChecker:
    """Run WHOIS lookups for a batch of domains on a bounded worker pool."""

    def __init__(self, config: Config | None = None) -> None:
        if config is None:
            config = Config()
        self.config = config

    def pool_size(self, count: int) -> int:
        if self.config.workers <= 0:
            return count
        return min(self.config.workers, count)

    async def check(self, domains: Sequence[str]) -> AsyncIterator[Result]:
        """Yield one result per domain in completion order."""
        total = len(domains)
        results: asyncio.Queue[Result] = asyncio.Queue()
        jobs: asyncio.Queue[Job] = asyncio.Queue()
        for domain in domains:
            jobs.put_nowait(Job(domain, results))

        resolver = aiodns.DNSResolver(timeout=self.config.timeout) if total else None

        async def worker() -> None:
            while True:
                try:
                    job = jobs.get_nowait()
                except asyncio.QueueEmpty:
                    break
                await job.run(self.config, resolver)

        size = self.pool_size(total)
        logger.info(f"Starter {total} opslag med {size} workers")
        workers = [asyncio.create_task(worker()) for _ in range(size)]
        progress = tqdm(
            total=total, desc="whois", file=sys.stderr, disable=not self.config.progress
        )
        try:
            for _ in range(total):
                yield await results.get()
                progress.update(1)
        finally:
            progress.close()
            for w in workers:
                w.cancel()
            for w in workers:
                with contextlib.suppress(asyncio.CancelledError):
                    await w
        logger.info(f"Færdig med {total} opslag")

    async def report(self, results: AsyncIterator[Result], out: TextIO | None = None) -> list[Result]:
        """Print each result as it arrives and return all of them."""
        if out is None:
            out = sys.stdout
        seen: list[Result] = []
        async for result in results:
            seen.append(result)
            line = format_result(result, self.config.debug, self.config.start_ms)
            if line is not None:
                out.write(line + "\n")
                out.flush()
        return seen

    async def run(self, domains: Sequence[str], out: TextIO | None = None) -> list[Result]:
        """Check all domains and stream the report to ``out``."""
        return await self.report(self.check(domains), out)


# --- Hovedprogram --- #
def main() -> None:
    """Entry point invoking :mod:`chkdomain.cli`."""
    from .cli import main as cli_main

    cli_main()
