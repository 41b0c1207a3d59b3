import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from .errors import NoDataAvailable, SourceUnavailable
from .run_logger import log_step

logger = logging.getLogger(__name__)

SourceFn = Callable[[str], Any]


class FallbackCoordinator:
    """Try data sources strictly in order and return the first success.

    Each source is a ``(name, fetch_fn)`` pair. ``fetch_fn(stock_id)`` either
    returns a normalised record or raises ``SourceUnavailable``; any other
    exception is a bug and propagates.
    """

    def __init__(self, sources: Sequence[Tuple[str, SourceFn]], label: str = "data") -> None:
        self.sources = list(sources)
        self.label = label

    @property
    def source_names(self) -> List[str]:
        return [name for name, _ in self.sources]

    def fetch(self, stock_id: str) -> Any:
        attempts: List[Tuple[str, str]] = []
        all_empty = True
        for name, fetch_fn in self.sources:
            try:
                record = fetch_fn(stock_id)
            except SourceUnavailable as exc:
                attempts.append((name, exc.reason))
                all_empty = all_empty and exc.empty
                logger.info("%s source %s failed for %s: %s", self.label, name, stock_id, exc.reason)
                continue
            if hasattr(record, "source"):
                record.source = name
            log_step(
                f"{self.label}:fallback",
                {"stock_id": stock_id, "source": name, "failed": [n for n, _ in attempts]},
            )
            return record

        log_step(
            f"{self.label}:exhausted",
            {"stock_id": stock_id, "attempts": attempts},
            level=logging.WARNING,
        )
        raise NoDataAvailable(attempts, all_empty=all_empty and bool(attempts))


def build_sources(order: Sequence[str], registry: Dict[str, SourceFn]) -> List[Tuple[str, SourceFn]]:
    return [(name, registry[name]) for name in order if name in registry]


def fetch_parallel(
    tasks: Dict[str, Callable[[], Any]],
    max_workers: int = 4,
    parallel: bool = True,
    default: Optional[Callable[[], Any]] = None,
    failures: Optional[Dict[str, SourceUnavailable]] = None,
) -> Dict[str, Any]:
    """Run independent upstream calls and join them.

    A task that raises ``SourceUnavailable`` contributes ``default()`` (or
    ``None``) instead of failing the whole join. When ``failures`` is given the
    exception is also recorded there under the task name.
    """

    def run(name: str, task: Callable[[], Any]) -> Any:
        try:
            return task()
        except SourceUnavailable as exc:
            logger.info("parallel task %s failed: %s", name, exc.reason)
            if failures is not None:
                failures[name] = exc
            return default() if default else None

    results: Dict[str, Any] = {}
    if parallel and len(tasks) > 1:
        with ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(tasks)))) as executor:
            futures = {name: executor.submit(run, name, task) for name, task in tasks.items()}
            for name, fut in futures.items():
                results[name] = fut.result()
    else:
        for name, task in tasks.items():
            results[name] = run(name, task)
    return results


def first_failure(source: str, names: Sequence[str], failures: Dict[str, SourceUnavailable]) -> SourceUnavailable:
    """The earliest failed task, in task order, re-raised as a failure of ``source``."""
    first = next(failures[name] for name in names if name in failures)
    return SourceUnavailable(source, first.reason, upstream_status=first.upstream_status, timeout=first.timeout)
