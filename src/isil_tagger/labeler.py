from __future__ import annotations

import datetime
import logging

from isil_tagger.exceptions import TaggerError
from isil_tagger.holdings.cache import HoldingsCache
from isil_tagger.record import Record
from isil_tagger.rules import AttachmentMode, RuleMatcher

logger = logging.getLogger(__name__)


class Labeler:
    """Compute institution labels for a record from the rule store.

    One labeler is shared by all workers of a run; its caches are the only
    state and both are safe for concurrent use.
    """

    def __init__(
        self,
        matcher: RuleMatcher,
        holdings: HoldingsCache,
        *,
        today: datetime.date | None = None,
    ) -> None:
        self.matcher = matcher
        self.holdings = holdings
        self.today = today

    def labels_for(self, record: Record) -> set[str]:
        labels: set[str] = set()
        for rule in self.matcher.match(record.source_id, record.collections):
            mode = rule.attachment_mode()
            if rule.institution in labels:
                continue
            if mode is AttachmentMode.UNCONDITIONAL:
                labels.add(rule.institution)
            elif mode is AttachmentMode.HOLDINGS:
                if self.holdings.covers(rule.holdings_file_ref, record, today=self.today):
                    labels.add(rule.institution)
            else:
                # Content files are not evaluated; such rules never attach.
                logger.debug(
                    "Skipping content file rule for %s: %s", rule.institution, rule.content_file_ref
                )
        return labels

    def label(self, record: Record) -> Record:
        """Replace the record's labels with the computed set."""
        try:
            record.labels = self.labels_for(record)
        except TaggerError as exc:
            exc.context.setdefault("record_id", record.record_id)
            raise
        return record
