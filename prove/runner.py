"""Staged check execution.

Stages run in a fixed order:

1. critical      serial in registration order; the first failure ends the run
2. parallel      all launched at once; every result is kept, no fail-fast
3. mode-specific serial; checks not applicable to the resolved mode pass as "not applicable"
4. optional      serial; checks whose toggle is off pass as "disabled"

Every attempted check yields exactly one CheckResult. A check that raises or times out
fails itself; it never takes the run down with it.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import replace
from types import MappingProxyType
from typing import Callable

from prove.checks.base import CRITICAL, MODE_SPECIFIC, OPTIONAL, PARALLEL, CheckDefinition, CheckRegistry, CheckResult, PriorResults
from prove.context import Context
from prove.core.errors import ProveError
from prove.report import Report


logger = logging.getLogger(__name__)


def _elapsed_ms(started: float, clock: Callable[[], float]) -> int:
    return int((clock() - started) * 1000)


class Runner:
    def __init__(self, registry: CheckRegistry, *, clock: Callable[[], float] = time.perf_counter) -> None:
        self.registry = registry
        self._clock = clock

    @staticmethod
    def skip_reason(definition: CheckDefinition, ctx: Context) -> str | None:
        if definition.modes is not None and ctx.mode not in definition.modes:
            return f"not applicable (mode={ctx.mode})"
        if definition.toggle is not None and not ctx.config.toggle_enabled(definition.toggle):
            return f"disabled (toggle {definition.toggle} is off)"
        return None

    async def execute(self, definition: CheckDefinition, ctx: Context, prior: PriorResults) -> CheckResult:
        started = self._clock()
        skip = self.skip_reason(definition, ctx)
        if skip is not None:
            logger.debug("%s: %s", definition.id, skip)
            return CheckResult(id=definition.id, ok=True, duration_ms=0, reason=skip, details={"skipped": True})

        timeout_s = ctx.config.timeout_for(definition.id)
        try:
            result = await asyncio.wait_for(definition.run(ctx, prior), timeout=timeout_s)
        except asyncio.TimeoutError:
            result = CheckResult(
                id=definition.id,
                ok=False,
                reason=f"timed out after {timeout_s:g}s",
                details={"timeout_s": timeout_s},
            )
        except ProveError as e:
            result = CheckResult(
                id=definition.id,
                ok=False,
                reason=str(e),
                details={"error_type": type(e).__name__, **e.details},
            )
        except Exception as e:
            # Check boundary: an unexpected crash fails only the owning check.
            logger.exception("check %s raised", definition.id)
            result = CheckResult(
                id=definition.id,
                ok=False,
                reason=f"{type(e).__name__}: {e}",
                details={"error_type": type(e).__name__},
            )

        if not isinstance(result, CheckResult):
            logger.error("check %s returned %s instead of a CheckResult", definition.id, type(result).__name__)
            result = CheckResult(
                id=definition.id,
                ok=False,
                reason=f"check returned {type(result).__name__}",
                details={"error_type": "InvalidCheckResult"},
            )
        elif result.id != definition.id:
            result = replace(result, id=definition.id)
        result = result.with_duration(_elapsed_ms(started, self._clock))
        if result.ok:
            logger.info("%s: ok (%d ms)", definition.id, result.duration_ms)
        else:
            logger.warning("%s: FAIL (%s)", definition.id, result.reason)
        return result

    async def run(self, ctx: Context, *, quick: bool = False) -> Report:
        started = self._clock()
        results: dict[str, CheckResult] = {}
        prior = MappingProxyType(results)
        halted = False

        for definition in self.registry.stage(CRITICAL, quick=quick):
            result = await self.execute(definition, ctx, prior)
            results[definition.id] = result
            if not result.ok:
                logger.error("critical check %s failed; skipping remaining stages", definition.id)
                halted = True
                break

        if not halted:
            parallel = self.registry.stage(PARALLEL, quick=quick)
            # gather returns results in argument order, i.e. registration order.
            outcomes = await asyncio.gather(*(self.execute(d, ctx, prior) for d in parallel))
            for definition, result in zip(parallel, outcomes):
                results[definition.id] = result

            for stage in (MODE_SPECIFIC, OPTIONAL):
                for definition in self.registry.stage(stage, quick=quick):
                    results[definition.id] = await self.execute(definition, ctx, prior)

        ordered = tuple(results.values())
        return Report(
            results=ordered,
            overall_ok=all(r.ok for r in ordered),
            total_duration_ms=_elapsed_ms(started, self._clock),
            mode=ctx.mode,
            phase=ctx.phase.phase,
            quick=quick,
        )


def run_gate(ctx: Context, registry: CheckRegistry, *, quick: bool = False) -> Report:
    return asyncio.run(Runner(registry).run(ctx, quick=quick))
