"""Signal reconciliation.

Brings each company's stored signal in line with what its applicable
formula says right now. Every company is handled independently: a failing
formula leaves that company's previous signal untouched and the run moves on.
"""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

from app.core.exceptions import CompanyNotFound
from app.core.logging import get_logger, ticker_var
from app.formulas.expression.evaluator import MetricLoader
from app.formulas.resolver import resolve_signal
from app.repositories import companies_orm, formulas_orm, signals_orm


logger = get_logger("services.signal_reconciler")

CompanyCallback = Callable[[Any, bool], Awaitable[None] | None]


async def reconcile(
    companies: Sequence[Any],
    all_formulas: Sequence[Any],
    on_company: CompanyCallback | None = None,
    *,
    loader: MetricLoader | None = None,
) -> int:
    """Resolve and store signals for ``companies``.

    Args:
        companies: Companies with ``sector`` loaded
        all_formulas: Candidate formulas
        on_company: Called as ``on_company(company, generated)`` after each
            company, failed or not
        loader: Quarterly data loader override

    Returns:
        Number of signal rows written
    """
    generated = 0
    for company in companies:
        token = ticker_var.set(company.ticker)
        try:
            inserted = await _reconcile_one(company, all_formulas, loader)
        finally:
            ticker_var.reset(token)
        if inserted:
            generated += 1

        if on_company is not None:
            maybe = on_company(company, inserted)
            if inspect.isawaitable(maybe):
                await maybe

    return generated


async def _reconcile_one(
    company: Any,
    all_formulas: Sequence[Any],
    loader: MetricLoader | None,
) -> bool:
    resolution = await resolve_signal(company, all_formulas, loader=loader)
    if resolution.failed:
        # Keep the last known signal
        logger.debug(f"Skipping {company.ticker}: {resolution.error}")
        return False

    try:
        return await signals_orm.replace_company_signal(company.id, resolution.result)
    except Exception as e:
        # The transaction rolled back, so the previous signal is still there
        logger.warning(
            f"Could not store signal for {company.ticker} ({company.id}): {e}",
            extra={"extra_fields": {"company_id": company.id}},
        )
        return False


async def load_companies(company_ids: Sequence[str] | None = None) -> list[Any]:
    """Fetch the requested companies, or all of them.

    Raises:
        CompanyNotFound: Any requested id does not exist
    """
    if company_ids is None:
        return await companies_orm.list_companies()

    wanted = list(dict.fromkeys(company_ids))
    companies = await companies_orm.get_companies_by_ids(wanted)
    found = {c.id for c in companies}
    missing = [cid for cid in wanted if cid not in found]
    if missing:
        raise CompanyNotFound(missing)
    return companies


async def calculate_and_store_signals(company_ids: Sequence[str] | None = None) -> int:
    """Reconcile the given companies (all when None) against enabled formulas.

    Raises:
        CompanyNotFound: Before any work, if an id does not exist
    """
    companies = await load_companies(company_ids)
    formulas = await formulas_orm.list_enabled_formulas()
    generated = await reconcile(companies, formulas)
    logger.info(
        f"Reconciled {len(companies)} companies against {len(formulas)} formulas, "
        f"{generated} signals generated"
    )
    return generated
