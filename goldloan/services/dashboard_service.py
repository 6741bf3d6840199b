"""Dashboard statistics for the GoldLoan engine.

Aggregates are computed with pandas over the active loans visible to the
actor. Results may be served from a TTL cache; nothing on a write path reads
them.
"""
import logging
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP

import pandas as pd

from goldloan.authorization import AccessPolicy, Action
from goldloan.cache import TTLCache
from goldloan.config import ACCOUNTS, DASHBOARD_CACHE_TTL, LOAN_STATUSES
from goldloan.services.loan_calculator import round_money

logger = logging.getLogger(__name__)


def _empty_stats():
    stats = {'total_loans': 0, 'total_amount': 0.0}
    for status in LOAN_STATUSES:
        stats[f"{status}_loans"] = 0
    stats['outsourced_loans'] = 0
    stats['outsourced_amount'] = 0.0
    for account in ACCOUNTS:
        stats[f"{account}_loans"] = 0
        stats[f"{account}_amount"] = 0.0
    return stats


def summarize_loans(df, year=None):
    """Build the dashboard payload from a loans DataFrame.

    Args:
        df: Frame with ``status``, ``account``, ``loan_amount``,
            ``outsourced_to`` and ``application_date`` columns.
        year: Calendar year for the monthly trend, defaults to the current one.

    Returns:
        Dict with ``stats`` (counts and sums) and ``monthly_trends`` (list of
        ``{'month', 'count', 'total_amount'}`` for months with activity).
    """
    stats = _empty_stats()
    year = year or datetime.now().year
    if df.empty:
        return {'stats': stats, 'monthly_trends': []}

    stats['total_loans'] = int(len(df))
    stats['total_amount'] = float(df['loan_amount'].sum())

    status_counts = df['status'].value_counts()
    for status in LOAN_STATUSES:
        stats[f"{status}_loans"] = int(status_counts.get(status, 0))

    outsourced = df[df['outsourced_to'].notna()]
    stats['outsourced_loans'] = int(len(outsourced))
    stats['outsourced_amount'] = float(outsourced['loan_amount'].sum())

    by_account = df.groupby('account')['loan_amount'].agg(['count', 'sum'])
    for account in ACCOUNTS:
        if account in by_account.index:
            stats[f"{account}_loans"] = int(by_account.loc[account, 'count'])
            stats[f"{account}_amount"] = float(by_account.loc[account, 'sum'])

    this_year = df[df['application_date'].dt.year == year]
    trends = (
        this_year.groupby(this_year['application_date'].dt.month)['loan_amount']
        .agg(['count', 'sum'])
        .sort_index()
    )
    monthly_trends = [
        {'month': int(month), 'count': int(row['count']), 'total_amount': float(row['sum'])}
        for month, row in trends.iterrows()
    ]
    return {'stats': stats, 'monthly_trends': monthly_trends}


def summarize_payments(df, as_of=None):
    """Collection summary across loans.

    A loan is overdue when its due date has passed and nothing was paid.
    ``collection_rate`` is total paid over the sum of monthly EMIs, as a
    whole percentage.
    """
    as_of = as_of or datetime.now()
    if df.empty:
        return {'total_loans': 0, 'total_emi': 0.0, 'total_paid': 0.0,
                'overdue_loans': 0, 'collection_rate': 0}

    total_emi = round_money(df['monthly_emi'].sum())
    total_paid = round_money(df['total_paid'].sum())
    overdue = df[(df['due_date'] < pd.Timestamp(as_of)) & (df['payment_count'] == 0)]

    collection_rate = 0
    if total_emi > 0:
        rate = Decimal(str(total_paid)) / Decimal(str(total_emi)) * 100
        collection_rate = int(rate.quantize(Decimal('1'), rounding=ROUND_HALF_UP))

    return {
        'total_loans': int(len(df)),
        'total_emi': total_emi,
        'total_paid': total_paid,
        'overdue_loans': int(len(overdue)),
        'collection_rate': collection_rate,
    }


class DashboardService:
    """Serves cached, role-scoped loan statistics."""

    def __init__(self, db_manager, policy=None, cache=None):
        self.db = db_manager
        self.policy = policy or AccessPolicy()
        self.cache = cache if cache is not None else TTLCache(ttl=DASHBOARD_CACHE_TTL)

    def get_stats(self, actor, year=None):
        self.policy.check(actor, Action.DASHBOARD_VIEW)
        submitted_by = self.policy.scope_to_actor(actor)
        key = f"dashboard_stats_{actor.role}_{actor.id}_{year or datetime.now().year}"

        def compute():
            logger.debug("Computing dashboard stats for %s", key)
            return summarize_loans(self.db.get_loans_frame(submitted_by=submitted_by), year)

        return self.cache.get_or_set(key, compute)

    def get_payment_summary(self, actor, as_of=None):
        self.policy.check(actor, Action.DASHBOARD_VIEW)
        df = self.db.get_payments_frame(submitted_by=self.policy.scope_to_actor(actor))
        return summarize_payments(df, as_of)

    def cache_stats(self, actor):
        self.policy.check(actor, Action.CACHE_VIEW)
        return {'dashboard': self.cache.get_stats()}

    def invalidate(self):
        """Drop all cached statistics after a write."""
        self.cache.clear()

    def clear_cache(self, actor):
        self.policy.check(actor, Action.CACHE_CLEAR)
        self.invalidate()
        logger.info("Dashboard cache cleared by actor %s", actor.id)
