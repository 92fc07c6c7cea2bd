#!/usr/bin/env python3
"""
henflow Batch Runner

Backs up hic et nunc OBJKTs to Estuary, or measures how much data they hold.

Key Design Principles:
- Discovery is paginated: pages of tokens are requested until a short page comes back
- Concurrency-bounded: every token pipeline holds a permit from a fixed-size limiter,
  and the pagination loop waits for a permit before spawning the next pipeline
- Failure-isolated: a token that fails to resolve or dispatch becomes a failed outcome,
  the batch keeps going and failures are listed once everything has finished
- Only indexer failures (token count, page fetch) abort the run

Pipeline per token:
    Pending → Resolving → Dispatching → Done
                  ↓ (no CID)              ↑
                  └───────────────────────┘

Usage:
    python henflow_batch.py --estuary_token KEY backup --all
    python henflow_batch.py --estuary_token KEY backup 152
    python henflow_batch.py --estuary_token KEY status 152
    python henflow_batch.py --estuary_token KEY --indexer TzKT size artefacts
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import signal
import time
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

import aiohttp
import polars as pl
from tqdm.asyncio import tqdm

from henflow_clients import EstuaryClient, HenflowError, IpfsClient, PageFetchError
from henflow_indexers import HICDEX_URL, INDEXERS, TZKT_URL, DiscoveryRecord, Indexer, make_indexer
from henflow_single import Action, Resolver, backup_one, make_action, status_one

__version__ = "0.1.0"

PAGE_SIZE = 10_000


# =============================================================================
# GLOBALS AND SHUTDOWN HANDLING
# =============================================================================

shutdown_flag = False


def _signal_handler(sig, frame):
    global shutdown_flag
    print("\n[Shutdown] Interrupt received. Finishing in-flight tokens...")
    shutdown_flag = True


def human_bytes(num: int) -> str:
    """Format a byte count with binary prefixes, e.g. 1.50kB for 1536."""
    return tqdm.format_sizeof(num, suffix="B", divisor=1024)


# =============================================================================
# CONFIGURATION
# =============================================================================

@dataclass
class Config:
    """Main application configuration."""
    command: str
    estuary_token: str

    indexer: str = "HicDex"
    num_tasks: int = 1000
    http_timeout: Optional[float] = None
    page_size: int = PAGE_SIZE

    # Command arguments
    token_id: Optional[int] = None
    all_tokens: bool = False
    input_path: Optional[str] = None
    size_target: Optional[str] = None

    # Retry configuration
    max_retry_attempts: int = 1
    retry_backoff_sec: float = 2.0

    # Output options
    report_path: Optional[str] = None
    failures_out: Optional[str] = None
    show_progress: bool = True

    # Endpoints
    hicdex_url: str = HICDEX_URL
    tzkt_url: str = TZKT_URL
    gateway_url: str = "https://ipfs.io"
    ipfs_daemon_url: str = "http://localhost:5001"
    estuary_url: str = "https://api.estuary.tech"

    @property
    def action(self) -> Optional[Action]:
        if self.command == "backup":
            return Action.ARCHIVE
        if self.command == "size":
            return Action(self.size_target)
        return None

    @property
    def is_batch(self) -> bool:
        if self.command == "size":
            return True
        return self.command == "backup" and (self.all_tokens or self.input_path is not None)


# Keys accepted in a --config JSON file
CONFIG_KEYS = (
    "indexer", "num_tasks", "estuary_token", "http_timeout", "page_size",
    "max_retry_attempts", "retry_backoff_sec", "report", "failures_out",
    "hicdex_url", "tzkt_url", "gateway_url", "ipfs_daemon_url", "estuary_url",
)


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="henflow",
        description="Hic et nunc backup tool: pin OBJKTs on Estuary or measure their size",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  henflow --estuary_token KEY backup --all
  henflow --estuary_token KEY backup 152
  henflow --estuary_token KEY status 152
  henflow --config henflow.json --indexer TzKT size artefacts
"""
    )

    p.add_argument("--config", type=str, help="Path to JSON config file")

    # Discovery and concurrency
    p.add_argument("--indexer", choices=INDEXERS, default="HicDex",
                   help="Way to discover OBJKTs from")
    p.add_argument("--num_tasks", type=int, default=1000,
                   help="Maximum number of parallel tasks to process OBJKTs")
    p.add_argument("--page_size", type=int, default=PAGE_SIZE)
    p.add_argument("--estuary_token", type=str, default=None, help="Estuary API key")
    p.add_argument("--http_timeout", type=float, default=None,
                   help="Individual HTTP requests' timeout, in seconds")

    # Retry
    p.add_argument("--max_retry_attempts", type=int, default=1)
    p.add_argument("--retry_backoff_sec", type=float, default=2.0)

    # Output
    p.add_argument("--report", type=str, default=None, help="Write a JSON overview here")
    p.add_argument("--failures_out", type=str, default=None,
                   help="Write failed tokens here (.csv or .parquet)")
    p.add_argument("--no_progress", action="store_true")

    # Endpoints
    p.add_argument("--hicdex_url", type=str, default=HICDEX_URL)
    p.add_argument("--tzkt_url", type=str, default=TZKT_URL)
    p.add_argument("--gateway_url", type=str, default="https://ipfs.io")
    p.add_argument("--ipfs_daemon_url", type=str, default="http://localhost:5001")
    p.add_argument("--estuary_url", type=str, default="https://api.estuary.tech")

    sub = p.add_subparsers(dest="command", required=True)

    backup = sub.add_parser("backup", help="Back up an OBJKT or all of hic et nunc")
    backup.add_argument("-a", "--all", dest="all_tokens", action="store_true")
    backup.add_argument("--input", dest="input_path", type=str, default=None,
                        help="CSV/Parquet file with a token_id column")
    backup.add_argument("token_id", type=int, nargs="?", default=None)

    status = sub.add_parser("status", help="Check if an OBJKT is pinned by Estuary")
    status.add_argument("token_id", type=int)

    size = sub.add_parser("size", help="Get the size of all OBJKTs")
    size.add_argument("size_target", choices=["pins", "artefacts"],
                      help="pins: only OBJKTs pinned by Estuary; artefacts: every OBJKT")

    return p


def parse_args(argv: Optional[list[str]] = None) -> Config:
    """Parse command line arguments, using a JSON config file for defaults."""
    p = build_parser()

    pre, _ = p.parse_known_args(argv)
    if pre.config:
        cfg_path = Path(pre.config)
        with cfg_path.open("r") as f:
            data = json.load(f)
        unknown = sorted(set(data) - set(CONFIG_KEYS))
        if unknown:
            p.error(f"Unknown keys in {cfg_path}: {', '.join(unknown)}")
        if "indexer" in data and data["indexer"] not in INDEXERS:
            p.error(f"Unknown indexer in {cfg_path}: {data['indexer']}")
        # Config file values act as defaults, explicit flags still win
        p.set_defaults(**data)

    args = p.parse_args(argv)

    if not args.estuary_token:
        p.error("--estuary_token is required (on the command line or in --config)")
    if args.num_tasks < 1:
        p.error("--num_tasks must be at least 1")
    if args.page_size < 1:
        p.error("--page_size must be at least 1")
    if args.command == "backup" and not (args.all_tokens or args.input_path or args.token_id is not None):
        p.error("backup needs a token_id, --all or --input")

    return Config(
        command=args.command,
        estuary_token=args.estuary_token,
        indexer=args.indexer,
        num_tasks=args.num_tasks,
        http_timeout=args.http_timeout,
        page_size=args.page_size,
        token_id=getattr(args, "token_id", None),
        all_tokens=getattr(args, "all_tokens", False),
        input_path=getattr(args, "input_path", None),
        size_target=getattr(args, "size_target", None),
        max_retry_attempts=max(1, args.max_retry_attempts),
        retry_backoff_sec=args.retry_backoff_sec,
        report_path=args.report,
        failures_out=args.failures_out,
        show_progress=not args.no_progress,
        hicdex_url=args.hicdex_url,
        tzkt_url=args.tzkt_url,
        gateway_url=args.gateway_url,
        ipfs_daemon_url=args.ipfs_daemon_url,
        estuary_url=args.estuary_url,
    )


# =============================================================================
# CONCURRENCY CONTROL
# =============================================================================

class Permit:
    """One unit of limiter capacity. Released once, on exit of `async with`."""

    def __init__(self, limiter: TaskLimiter):
        self._limiter = limiter
        self._released = False

    async def release(self) -> None:
        if self._released:
            return
        self._released = True
        await asyncio.shield(self._limiter._release())

    async def __aenter__(self) -> Permit:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.release()


class TaskLimiter:
    """
    Fixed-capacity counting semaphore for token pipelines.

    Limits the number of pipelines holding a permit at any time. Waiters are
    woken one at a time, in no guaranteed order.
    """

    def __init__(self, capacity: int):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._capacity = capacity
        self._inflight = 0
        self._peak = 0
        self._cond = asyncio.Condition()

    async def acquire(self) -> Permit:
        """Wait for a free slot and return a permit for it."""
        async with self._cond:
            while self._inflight >= self._capacity:
                await self._cond.wait()
            self._inflight += 1
            self._peak = max(self._peak, self._inflight)
        return Permit(self)

    async def _release(self) -> None:
        async with self._cond:
            self._inflight = max(0, self._inflight - 1)
            self._cond.notify()

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def inflight(self) -> int:
        """Permits currently held."""
        return self._inflight

    @property
    def peak_inflight(self) -> int:
        """Highest number of permits held at once."""
        return self._peak


class AggregateCounter:
    """Byte total shared by every pipeline of a run."""

    def __init__(self):
        self._total = 0
        self._lock = asyncio.Lock()

    async def add(self, n: int) -> int:
        """Add `n` bytes and return the new total."""
        if n < 0:
            raise ValueError("byte counts are never negative")
        async with self._lock:
            self._total += n
            return self._total

    @property
    def value(self) -> int:
        return self._total


# =============================================================================
# TOKEN PIPELINE
# =============================================================================

@dataclass
class PipelineOutcome:
    """Result of processing a single token."""
    token_id: int
    success: bool
    cid: Optional[str] = None
    bytes_counted: int = 0
    skipped: bool = False
    error: Optional[str] = None
    status_code: Optional[int] = None
    retryable: bool = False


async def run_item(
    token_id: int,
    record: Optional[DiscoveryRecord],
    *,
    permit: Permit,
    resolver: Resolver,
    action: Any,
    total: AggregateCounter,
    pbar: Optional[tqdm] = None,
) -> PipelineOutcome:
    """
    Resolve one token and perform the action on its CID.

    The permit is released whatever happens. Errors never escape: they are
    returned as a failed PipelineOutcome.

    Args:
        token_id: Token being processed
        record: Its indexer record, or None to look it up by id first
        permit: Limiter permit owned by this pipeline
        resolver: Record -> CID resolver for the active indexer
        action: Object with `async perform(cid) -> int`
        total: Run-wide byte counter
        pbar: Progress bar advanced by one when the token is done
    """
    cid: Optional[str] = None
    async with permit:
        try:
            if record is None:
                record = await resolver.fetch_record(token_id)
            cid = await resolver.resolve(record)
            if not cid:
                return PipelineOutcome(token_id=token_id, success=True, skipped=True)

            size = await action.perform(cid)
            if size:
                running = await total.add(size)
                if pbar is not None:
                    pbar.set_postfix_str(f"[{human_bytes(running)}]", refresh=False)
            return PipelineOutcome(token_id=token_id, success=True, cid=cid, bytes_counted=size)

        except HenflowError as e:
            return PipelineOutcome(
                token_id=token_id,
                success=False,
                cid=cid,
                error=str(e),
                status_code=e.status_code,
                retryable=e.retryable,
            )
        except Exception as e:
            return PipelineOutcome(token_id=token_id, success=False, cid=cid, error=f"Error: {e}")
        finally:
            if pbar is not None:
                pbar.update(1)


# =============================================================================
# BATCH COORDINATOR
# =============================================================================

@dataclass
class BatchResult:
    """Everything a finished batch reports."""
    outcomes: list[PipelineOutcome]
    total_bytes: int
    page_requests: int
    peak_inflight: int
    elapsed_sec: float
    interrupted: bool = False

    @property
    def successes(self) -> list[PipelineOutcome]:
        return [o for o in self.outcomes if o.success]

    @property
    def failures(self) -> list[PipelineOutcome]:
        return [o for o in self.outcomes if not o.success]


@dataclass
class _Handle:
    token_id: int
    record: Optional[DiscoveryRecord]
    permit: Permit = field(repr=False)
    task: asyncio.Task = field(repr=False)


class BatchCoordinator:
    """
    Runs one batch: owns the limiter and the byte counter, spawns a pipeline
    per token and joins them all once discovery is over.
    """

    def __init__(
        self,
        *,
        indexer: Indexer,
        resolver: Resolver,
        action: Any,
        num_tasks: int = 1000,
        page_size: int = PAGE_SIZE,
        max_retry_attempts: int = 1,
        retry_backoff_sec: float = 2.0,
        show_progress: bool = True,
    ):
        self.indexer = indexer
        self.resolver = resolver
        self.action = action
        self.page_size = page_size
        self.max_retry_attempts = max(1, max_retry_attempts)
        self.retry_backoff_sec = retry_backoff_sec
        self.show_progress = show_progress

        self.limiter = TaskLimiter(num_tasks)
        self.total = AggregateCounter()
        self.page_requests = 0

        self._handles: list[_Handle] = []
        self._pbar: Optional[tqdm] = None

    async def _spawn(self, token_id: int, record: Optional[DiscoveryRecord]) -> None:
        permit = await self.limiter.acquire()
        task = asyncio.create_task(
            run_item(
                token_id,
                record,
                permit=permit,
                resolver=self.resolver,
                action=self.action,
                total=self.total,
                pbar=self._pbar,
            )
        )
        self._handles.append(_Handle(token_id, record, permit, task))

    async def paginate(self) -> int:
        """
        Request pages until a short one comes back, spawning a pipeline per record.

        A page exactly `page_size` long means there may be more, so a collection
        whose size is a multiple of `page_size` costs one extra, empty request.

        Returns:
            Number of records discovered

        Raises:
            PageFetchError: If a page can't be fetched
        """
        offset = 0
        last_len = self.page_size
        while last_len >= self.page_size:
            if shutdown_flag:
                print(f"\n[Shutdown] Stopping discovery at offset {offset}")
                break
            records = await self.indexer.page(offset, self.page_size)
            self.page_requests += 1
            last_len = len(records)
            for record in records:
                await self._spawn(record.token_id, record)
            offset += last_len
        return offset

    async def join(self) -> list[tuple[Optional[DiscoveryRecord], PipelineOutcome]]:
        """Wait for every spawned pipeline, in spawn order."""
        handles, self._handles = self._handles, []
        results = []
        for h in handles:
            results.append((h.record, await h.task))
        return results

    async def _abort(self) -> None:
        handles, self._handles = self._handles, []
        for h in handles:
            h.task.cancel()
        await asyncio.gather(*(h.task for h in handles), return_exceptions=True)
        # A task cancelled before its first step never entered `async with permit`
        for h in handles:
            await h.permit.release()

    async def _retry(
        self, results: list[tuple[Optional[DiscoveryRecord], PipelineOutcome]]
    ) -> list[tuple[Optional[DiscoveryRecord], PipelineOutcome]]:
        attempt = 1
        while attempt < self.max_retry_attempts and not shutdown_flag:
            retry_idx = [i for i, (_, out) in enumerate(results) if not out.success and out.retryable]
            if not retry_idx:
                break
            attempt += 1
            print(f"\n[Retry {attempt}/{self.max_retry_attempts}] "
                  f"{len(retry_idx)} tokens in {self.retry_backoff_sec:.1f}s")
            await asyncio.sleep(self.retry_backoff_sec)

            if self._pbar is not None and self._pbar.total is not None:
                self._pbar.total += len(retry_idx)
                self._pbar.refresh()
            for i in retry_idx:
                record, out = results[i]
                await self._spawn(out.token_id, record)
            for i, retried in zip(retry_idx, await self.join()):
                results[i] = retried
        return results

    async def _run(self, spawn_all: Callable[[], Awaitable[Any]], expected: int) -> BatchResult:
        start = time.monotonic()
        self._pbar = tqdm(total=expected, desc="Processing", unit="token", disable=not self.show_progress)
        try:
            try:
                await spawn_all()
            except BaseException:
                await self._abort()
                raise
            results = await self.join()
            results = await self._retry(results)
        finally:
            self._pbar.close()

        return BatchResult(
            outcomes=[out for _, out in results],
            total_bytes=self.total.value,
            page_requests=self.page_requests,
            peak_inflight=self.limiter.peak_inflight,
            elapsed_sec=time.monotonic() - start,
            interrupted=shutdown_flag,
        )

    async def run_all(self) -> BatchResult:
        """Discover every token through the indexer and process it."""
        count = await self.indexer.count()
        print(f"[Load] {self.indexer.name} reports {count} tokens")
        return await self._run(self.paginate, count)

    async def run_ids(self, token_ids: list[int]) -> BatchResult:
        """Process an explicit list of token ids, looking each record up by id."""
        async def spawn_ids():
            for token_id in token_ids:
                if shutdown_flag:
                    break
                await self._spawn(token_id, None)
        return await self._run(spawn_ids, len(token_ids))


# =============================================================================
# INPUT AND REPORTS
# =============================================================================

def load_token_ids(file_path: str, column: str = "token_id") -> list[int]:
    """
    Load token ids from a CSV or Parquet file.

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValueError: If the format is unsupported or the column is missing
    """
    if not os.path.exists(file_path):
        raise FileNotFoundError(f"Input file {file_path} not found")

    if file_path.endswith(".parquet"):
        df = pl.read_parquet(file_path)
    elif file_path.endswith(".csv") or file_path.endswith(".txt"):
        df = pl.read_csv(file_path)
    else:
        raise ValueError(f"Could not determine file format from extension: {file_path}")

    if column not in df.columns:
        raise ValueError(f"Column '{column}' not found in {file_path}")
    ids = df.get_column(column).drop_nulls().unique(maintain_order=True)
    return [int(v) for v in ids.to_list()]


def write_failures(outcomes: list[PipelineOutcome], file_path: str) -> int:
    """Write failed tokens to CSV/Parquet, in a form `backup --input` reads back."""
    failures = [o for o in outcomes if not o.success]
    df = pl.DataFrame(
        {
            "token_id": [o.token_id for o in failures],
            "cid": [o.cid for o in failures],
            "status_code": [o.status_code for o in failures],
            "error": [o.error for o in failures],
        },
        schema={"token_id": pl.Int64, "cid": pl.Utf8, "status_code": pl.Int64, "error": pl.Utf8},
    )
    if file_path.endswith(".parquet"):
        df.write_parquet(file_path)
    else:
        df.write_csv(file_path)
    return df.height


def write_overview(*, cfg: Config, result: BatchResult, file_path: str) -> str:
    """Write JSON overview report."""
    failures = result.failures
    err_counter = Counter((o.status_code, o.error) for o in failures)
    total = len(result.outcomes)

    report = {
        "henflow_version": __version__,
        "script_inputs": {
            "command": cfg.command,
            "size_target": cfg.size_target,
            "indexer": cfg.indexer,
            "num_tasks": cfg.num_tasks,
            "page_size": cfg.page_size,
            "http_timeout": cfg.http_timeout,
            "input": cfg.input_path,
            "max_retry_attempts": cfg.max_retry_attempts,
        },
        "summary": {
            "total_tokens": total,
            "successful": len(result.successes),
            "skipped_no_artifact": sum(1 for o in result.outcomes if o.skipped),
            "failed": len(failures),
            "success_rate_percent": round(len(result.successes) / total * 100.0, 2) if total else 0.0,
            "total_bytes": result.total_bytes,
            "page_requests": result.page_requests,
            "peak_inflight": result.peak_inflight,
            "elapsed_sec": round(result.elapsed_sec, 3),
            "shutdown_requested": result.interrupted,
        },
        "error_breakdown": [
            {"status_code": sc, "error": err, "count": cnt}
            for (sc, err), cnt in err_counter.most_common()
        ],
        "timestamp_local": time.strftime("%Y-%m-%d %H:%M:%S", time.localtime()),
    }

    out = Path(file_path)
    with out.open("w") as f:
        json.dump(report, f, indent=2)
    return str(out.resolve())


def print_summary(cfg: Config, result: BatchResult) -> None:
    for o in result.failures:
        print(f"Token n.{o.token_id}: {o.error}")

    print("\n" + "=" * 72)
    print("FINAL SUMMARY")
    print("=" * 72)
    print(f"Tokens processed:      {len(result.outcomes)}")
    print(f"Successful:            {len(result.successes)}")
    print(f"Skipped (no artifact): {sum(1 for o in result.outcomes if o.skipped)}")
    print(f"Failed:                {len(result.failures)}")
    if result.page_requests:
        print(f"Page requests:         {result.page_requests}")
    print(f"Peak in-flight:        {result.peak_inflight}")
    print(f"Elapsed time:          {result.elapsed_sec:.2f}s")
    if cfg.command == "size":
        print(f"Total: {human_bytes(result.total_bytes)} ({result.total_bytes} bytes)")


# =============================================================================
# MAIN
# =============================================================================

async def run(cfg: Config, token_ids: Optional[list[int]] = None) -> int:
    """
    Run the configured command. Returns the process exit code.

    `token_ids`, when given, replaces discovery through the indexer.
    """
    connector = aiohttp.TCPConnector(
        limit=max(50, cfg.num_tasks * 2),
        ttl_dns_cache=300,
        use_dns_cache=True,
    )
    async with aiohttp.ClientSession(
        connector=connector,
        timeout=aiohttp.ClientTimeout(total=cfg.http_timeout),
        headers={"User-Agent": f"henflow/{__version__}"},
    ) as session:
        indexer = make_indexer(cfg.indexer, session, hicdex_url=cfg.hicdex_url, tzkt_url=cfg.tzkt_url)
        ipfs = IpfsClient(session, gateway_url=cfg.gateway_url, daemon_url=cfg.ipfs_daemon_url)
        estuary = EstuaryClient(session, cfg.estuary_token, base_url=cfg.estuary_url)
        resolver = Resolver(indexer, ipfs)

        if cfg.command == "status":
            cid, pinned = await status_one(cfg.token_id, resolver, estuary)
            print(f"CID: {cid}")
            print("Pinned." if pinned else "Not pinned.")
            return 0

        if not cfg.is_batch:
            cid = await backup_one(cfg.token_id, resolver, estuary)
            if cid is None:
                print(f"[Backup] Token n.{cfg.token_id} has no artifact")
            else:
                print(f"[Backup] Token n.{cfg.token_id}: {cid} pinned")
            return 0

        coordinator = BatchCoordinator(
            indexer=indexer,
            resolver=resolver,
            action=make_action(cfg.action, ipfs=ipfs, estuary=estuary),
            num_tasks=cfg.num_tasks,
            page_size=cfg.page_size,
            max_retry_attempts=cfg.max_retry_attempts,
            retry_backoff_sec=cfg.retry_backoff_sec,
            show_progress=cfg.show_progress,
        )
        if token_ids is not None:
            result = await coordinator.run_ids(token_ids)
        else:
            result = await coordinator.run_all()

    print_summary(cfg, result)

    if cfg.failures_out and result.failures:
        n = write_failures(result.outcomes, cfg.failures_out)
        print(f"[Report] {n} failed tokens written to {cfg.failures_out}")
    if cfg.report_path:
        print(f"[Report] Overview: {write_overview(cfg=cfg, result=result, file_path=cfg.report_path)}")

    print("=" * 72)
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point."""
    cfg = parse_args(argv)
    token_ids: Optional[list[int]] = None

    if cfg.is_batch:
        signal.signal(signal.SIGINT, _signal_handler)
        signal.signal(signal.SIGTERM, _signal_handler)

        print("=" * 72)
        print(f"henflow {__version__} | {cfg.command} | indexer={cfg.indexer} | num_tasks={cfg.num_tasks}")
        print("=" * 72)

        if cfg.input_path is not None and not cfg.all_tokens:
            try:
                token_ids = load_token_ids(cfg.input_path)
            except (FileNotFoundError, ValueError) as e:
                print(f"[Load] {e}")
                return 1
            print(f"[Load] {len(token_ids)} token ids from {cfg.input_path}")

    try:
        return asyncio.run(run(cfg, token_ids))
    except PageFetchError as e:
        print(f"[Fatal] Indexer request failed: {e}")
        return 1
    except HenflowError as e:
        print(f"[Error] {e}")
        return 1
    except KeyboardInterrupt:
        print("\n[Shutdown] Interrupted.")
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
