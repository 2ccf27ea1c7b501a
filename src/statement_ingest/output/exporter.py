"""Date-range export of stored transactions with exported markers."""

from datetime import date, timedelta
from typing import Optional

from statement_ingest.models.account import Account
from statement_ingest.models.export import (
    DateRangePolicy,
    ExportProfile,
    ExportResult,
    ExportRun,
    export_run_key,
)
from statement_ingest.output.renderers import CONTENT_TYPES, ExportError, RenderContext, render
from statement_ingest.processing.fx import FxRateProvider
from statement_ingest.processing.locks import AccountLocks
from statement_ingest.storage.sqlite_store import SQLiteStore
from statement_ingest.utils.date_utils import month_bounds, previous_month_bounds
from statement_ingest.utils.logging_config import LogContext, get_logger

logger = get_logger(__name__)


def resolve_range(
    policy: DateRangePolicy,
    today: date,
) -> tuple[Optional[date], Optional[date]]:
    """Inclusive range for a default-range policy, relative to ``today``."""
    if policy == DateRangePolicy.PREVIOUS_MONTH:
        return previous_month_bounds(today)
    if policy == DateRangePolicy.CURRENT_MONTH:
        return month_bounds(today.year, today.month)
    if policy == DateRangePolicy.LAST_30_DAYS:
        return today - timedelta(days=29), today
    return None, None


class ExportEngine:
    """Projects part of the stored history into an external format.

    Generation is pure: the document is built from a snapshot of the
    selected transactions, read under the accounts' write locks so no
    ingestion is half-visible. Exported markers are flipped afterwards,
    in one store transaction, and only when the document was generated
    in full.

    Transactions already exported under a profile are left out of later
    exports for that profile unless ``reexport`` is set. Repeating a
    marked export whose rows are all exported returns the stored document
    of the earlier run instead of an empty one.
    """

    def __init__(
        self,
        store: SQLiteStore,
        profiles: dict[str, ExportProfile],
        accounts: Optional[dict[str, Account]] = None,
        locks: Optional[AccountLocks] = None,
        fx_provider: Optional[FxRateProvider] = None,
    ):
        """Initialize export engine.

        Args:
            store: Transaction store.
            profiles: Export profiles by id.
            accounts: Known accounts, used when a request names none.
            locks: Per-account write locks shared with ingestion.
            fx_provider: Rate source for converted amount columns.
        """
        self.store = store
        self.profiles = profiles
        self.accounts = accounts or {}
        self.locks = locks or AccountLocks()
        self.fx_provider = fx_provider

    def export(
        self,
        profile_id: str,
        account_ids: Optional[list[str]] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        mark: bool = False,
        reexport: bool = False,
        owner: Optional[str] = None,
        today: Optional[date] = None,
    ) -> ExportResult:
        """Export transactions in an inclusive date range.

        Args:
            profile_id: Export profile to use.
            account_ids: Accounts to include (None = every known account
                of the owner).
            date_from: Range start. When both bounds are omitted the
                profile's default range applies.
            date_to: Range end.
            mark: Flip exported markers for the included transactions.
            reexport: Include transactions already exported under this profile.
            owner: Restrict to one owner's transactions.
            today: Reference date for the default range (defaults to today).

        Returns:
            ExportResult. An empty selection is a no-op, not an error.

        Raises:
            ExportError: If the profile is unknown, the range is inverted,
                or the document cannot be generated. No marker is flipped.
        """
        profile = self.profiles.get(profile_id)
        if profile is None:
            raise ExportError(f"Unknown export profile: {profile_id}", profile_id)

        if date_from is None and date_to is None:
            date_from, date_to = resolve_range(profile.default_range, today or date.today())
        if date_from is not None and date_to is not None and date_from > date_to:
            raise ExportError(
                f"Export range start {date_from} is after end {date_to}", profile_id
            )

        if account_ids is None:
            account_ids = sorted(
                a.id for a in self.accounts.values() if owner is None or a.owner == owner
            )
        account_ids = sorted(set(account_ids))
        run_key = export_run_key(profile.id, date_from, date_to, account_ids)

        with LogContext(logger, "export", profile=profile.id, run_key=run_key):
            with self.locks.hold_many(account_ids):
                snapshot = self.store.list_transactions(
                    account_ids=account_ids,
                    date_from=date_from,
                    date_to=date_to,
                    owner=owner,
                )

            selected = snapshot if reexport else [
                t for t in snapshot if not t.is_exported(profile.id)
            ]
            skipped = len(snapshot) - len(selected)

            if not selected and not reexport:
                prior = self.store.get_export_run(run_key)
                if prior is not None:
                    logger.info(
                        f"Export {profile.id} {date_from}..{date_to}: already exported, "
                        f"returning stored document from {prior.created_at}"
                    )
                    return ExportResult(
                        profile_id=profile.id,
                        date_from=date_from,
                        date_to=date_to,
                        account_ids=account_ids,
                        document=prior.document,
                        content_type=CONTENT_TYPES[profile.target_schema],
                        transaction_ids=list(prior.transaction_ids),
                        skipped_already_exported=skipped,
                        replayed=True,
                    )

            context = RenderContext(
                categories={c.id: c for c in self.store.list_categories(owner)},
                fx_provider=self.fx_provider,
            )
            document, content_type = render(profile, selected, context)
            transaction_ids = [t.id for t in selected]

            marked: list[str] = []
            if mark and selected:
                run = ExportRun(
                    run_key=run_key,
                    profile_id=profile.id,
                    date_from=date_from,
                    date_to=date_to,
                    account_ids=account_ids,
                    document=document,
                    transaction_ids=transaction_ids,
                )
                marked = self.store.record_export_run(run)

        if not selected:
            logger.info(f"Export {profile.id} {date_from}..{date_to}: no transactions in range")
        else:
            logger.info(
                f"Exported {len(selected)} transactions with profile {profile.id} "
                f"({len(marked)} newly marked, {skipped} already exported)"
            )
        return ExportResult(
            profile_id=profile.id,
            date_from=date_from,
            date_to=date_to,
            account_ids=account_ids,
            document=document,
            content_type=content_type,
            transaction_ids=transaction_ids,
            marked_ids=marked,
            skipped_already_exported=skipped,
        )
