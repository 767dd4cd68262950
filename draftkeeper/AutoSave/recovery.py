# recovery.py
# Description: Surfaces recoverable drafts for a path and records restore/dismiss decisions
#
# Imports
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional
#
# Third-Party Imports
from loguru import logger
#
# Local Imports
from .entry import AutoSaveEntry
from ..exceptions import RecoveryStateError
from .manager import AutoSaveManager
#
#######################################################################################################################
#
# Classes:

class RecoveryState(str, Enum):
    PENDING = "pending"
    RESTORED = "restored"
    DISMISSED = "dismissed"


@dataclass
class RecoveryCandidate:
    entry: AutoSaveEntry
    state: RecoveryState = RecoveryState.PENDING

    @property
    def id(self) -> str:
        return self.entry.id

    @property
    def content(self) -> str:
        return self.entry.content


class RecoveryCoordinator:
    """
    Read-only view of the manager's stored drafts for one path.

    Restoring hands the content to the applier registered for the id and leaves
    the entry in storage; only the manager's clear methods delete drafts.
    """

    def __init__(self, manager: AutoSaveManager):
        self.manager = manager
        self.path: Optional[str] = None
        self._candidates: Dict[str, RecoveryCandidate] = {}
        self._appliers: Dict[str, Callable[[str], None]] = {}

    def register_applier(self, autosave_id: str, applier: Callable[[str], None]) -> None:
        """Register the callable that puts restored content back into an element."""
        self._appliers[autosave_id] = applier

    def unregister_applier(self, autosave_id: str) -> None:
        self._appliers.pop(autosave_id, None)

    def scan(self, path: str, ids: Optional[Iterable[str]] = None) -> List[RecoveryCandidate]:
        """
        Collect pending candidates for `path`, newest first.

        With `ids`, only those ids are rescanned and candidates for other ids are
        kept, so several bound fields on one view can each scan for themselves.
        Duplicate stored entries for one id are resolved by the manager (newest
        wins, the older is deleted), so each id yields at most one candidate.
        """
        wanted = set(ids) if ids is not None else None
        if wanted is None or path != self.path:
            self._candidates = {}
        else:
            for autosave_id in wanted:
                self._candidates.pop(autosave_id, None)
        self.path = path
        if not self.manager.config.enable_recovery:
            return []

        now = self.manager.clock()
        for entry in self.manager.get_entries_for_path(path):
            if wanted is not None and entry.id not in wanted:
                continue
            if entry.is_expired(now) or not entry.content:
                continue
            self._candidates[entry.id] = RecoveryCandidate(entry)

        candidates = self.pending()
        if candidates:
            logger.info(f"Found {len(candidates)} recoverable draft(s) for '{path}'")
        return candidates

    def pending(self) -> List[RecoveryCandidate]:
        pending = [c for c in self._candidates.values() if c.state is RecoveryState.PENDING]
        pending.sort(key=lambda c: c.entry.updated_at, reverse=True)
        return pending

    def get_candidate(self, autosave_id: str) -> Optional[RecoveryCandidate]:
        return self._candidates.get(autosave_id)

    def _require_pending(self, autosave_id: str) -> RecoveryCandidate:
        candidate = self._candidates.get(autosave_id)
        if candidate is None:
            raise RecoveryStateError(f"No recovery candidate for '{autosave_id}'")
        if candidate.state is not RecoveryState.PENDING:
            raise RecoveryStateError(f"Candidate '{autosave_id}' is already {candidate.state.value}")
        return candidate

    def accept(self, autosave_id: str) -> str:
        """Restore a candidate: apply its content and mark it RESTORED. Returns the content."""
        candidate = self._require_pending(autosave_id)
        applier = self._appliers.get(autosave_id)
        if applier is not None:
            applier(candidate.content)
        else:
            logger.debug(f"No applier registered for '{autosave_id}'; returning content to caller")
        candidate.state = RecoveryState.RESTORED
        logger.info(f"Restored draft '{autosave_id}'")
        return candidate.content

    def dismiss(self, autosave_id: str) -> None:
        """Hide a candidate. The stored draft is kept."""
        candidate = self._require_pending(autosave_id)
        candidate.state = RecoveryState.DISMISSED
        logger.debug(f"Dismissed draft '{autosave_id}'")

    def dismiss_and_clear(self, autosave_id: str) -> None:
        """Hide a candidate and delete the stored draft."""
        self.dismiss(autosave_id)
        self.manager.clear_entry(autosave_id)

#
# End of recovery.py
########################################################################################################################
