from __future__ import annotations

import cProfile
import io
import logging
import pstats
import time
from contextlib import contextmanager
from typing import Iterator, Optional, Union

_SORT_KEYS = {
    "tottime": pstats.SortKey.TIME,
    "cumtime": pstats.SortKey.CUMULATIVE,
    "calls": pstats.SortKey.CALLS,
    "ncalls": pstats.SortKey.CALLS,
    "pcalls": pstats.SortKey.PCALLS,
    "name": pstats.SortKey.NAME,
    "file": pstats.SortKey.FILENAME,
    "line": pstats.SortKey.LINE,
    "nfl": pstats.SortKey.NFL,
    "stdname": pstats.SortKey.STDNAME,
}


def _resolve_sort_key(sort: Union[str, pstats.SortKey]) -> pstats.SortKey:
    """Map ``"tottime"``/``"cumtime"``/... to :class:`pstats.SortKey` (unknown -> tottime)."""
    if isinstance(sort, pstats.SortKey):
        return sort
    return _SORT_KEYS.get(str(sort).lower(), pstats.SortKey.TIME)


@contextmanager
def prof(
    enable: bool = False,
    *,
    sort: Union[str, pstats.SortKey] = "tottime",
    limit: Optional[int] = 25,
    out_path: Optional[str] = None,
    dump_path: Optional[str] = None,
    logger: Optional[logging.Logger] = None,
) -> Iterator[Optional[cProfile.Profile]]:
    r"""
    Toggleable :mod:`cProfile` context manager.

    With ``enable=False`` the block runs unprofiled and ``None`` is yielded.
    Otherwise the block is profiled and, on exit, a text report headed by the
    elapsed wall time :math:`\Delta t = t_1 - t_0` is written to
    ``out_path``, logged through ``logger``, or printed, in that order of
    preference.

    Parameters
    ----------
    enable : bool
    sort : str or pstats.SortKey, optional
        ``"tottime"`` (default), ``"cumtime"``, ``"calls"``, ...
    limit : int or None, optional
        Rows in the report; ``None`` prints everything.
    out_path : str, optional
        Text report destination.
    dump_path : str, optional
        Binary ``.pstats`` dump for external viewers.
    logger : logging.Logger, optional

    Examples
    --------
    >>> with prof(True, sort="cumtime", limit=10):  # doctest: +SKIP
    ...     seeding.run(pool)
    """
    if not enable:
        yield None
        return

    pr = cProfile.Profile()
    t0 = time.perf_counter()
    pr.enable()
    try:
        yield pr
    finally:
        pr.disable()
        t1 = time.perf_counter()

        s = io.StringIO()
        ps = pstats.Stats(pr, stream=s).strip_dirs().sort_stats(_resolve_sort_key(sort))
        ps.print_stats(limit if limit is not None else 1_000_000)
        text = f"[prof] elapsed={t1 - t0:.6f}s sort={sort} limit={limit}\n" + s.getvalue()

        if dump_path:
            ps.dump_stats(dump_path)
        if out_path:
            with open(out_path, "w", encoding="utf-8") as f:
                f.write(text)
        elif logger is not None:
            logger.info(text)
        else:
            print(text, end="")
