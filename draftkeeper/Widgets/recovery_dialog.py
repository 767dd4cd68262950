# recovery_dialog.py
# Description: Modal dialog offering to restore or discard recovered drafts
#
# Imports
from datetime import datetime
from typing import Dict, List, Optional
#
# 3rd-Party Imports
from loguru import logger
from textual.app import ComposeResult
from textual.containers import Container, Horizontal, VerticalScroll
from textual.screen import ModalScreen
from textual.widgets import Button, Label, Static
#
# Local Imports
from ..AutoSave.recovery import RecoveryCandidate, RecoveryCoordinator, RecoveryState
from ..exceptions import RecoveryStateError
#
#######################################################################################################################
#
# Classes:

PREVIEW_CHARS = 60


def _describe(candidate: RecoveryCandidate) -> str:
    entry = candidate.entry
    name = entry.metadata.label or entry.id
    saved = datetime.fromtimestamp(entry.updated_at).strftime("%Y-%m-%d %H:%M")
    text = " ".join(entry.content.split())
    if len(text) > PREVIEW_CHARS:
        text = text[:PREVIEW_CHARS - 1] + "…"
    return f"{name} (saved {saved})\n{text}"


class RecoveryDialog(ModalScreen[Dict[str, RecoveryState]]):
    """
    Lists the coordinator's pending drafts with a Restore and a Discard button each.

    Decisions go straight to the coordinator. The dialog dismisses with a map of
    autosave id to the decision taken once every draft was handled, or when
    closed; drafts left undecided stay pending.
    """

    DEFAULT_CSS = """
    RecoveryDialog {
        align: center middle;
    }

    RecoveryDialog > Container {
        width: 70;
        height: auto;
        max-height: 80%;
        border: thick $accent;
        background: $surface;
        padding: 1 2;
    }

    RecoveryDialog .dialog-title {
        text-style: bold;
        margin-bottom: 1;
        width: 100%;
        text-align: center;
    }

    RecoveryDialog VerticalScroll {
        height: auto;
        max-height: 24;
    }

    RecoveryDialog .recovery-row {
        height: auto;
        margin-bottom: 1;
    }

    RecoveryDialog .recovery-text {
        width: 1fr;
    }

    RecoveryDialog .button-container {
        align: center middle;
        height: 3;
        width: 100%;
    }

    RecoveryDialog Button {
        margin: 0 1;
        min-width: 10;
    }
    """

    def __init__(
        self,
        coordinator: RecoveryCoordinator,
        title: str = "Recover unsaved drafts?",
        clear_dismissed: bool = False,
        **kwargs
    ):
        """
        Initialize the recovery dialog.

        Args:
            coordinator: Coordinator that already scanned the current path
            title: Dialog title
            clear_dismissed: Delete discarded drafts from storage instead of only hiding them
        """
        super().__init__(**kwargs)
        self.coordinator = coordinator
        self.dialog_title = title
        self.clear_dismissed = clear_dismissed
        self.candidates: List[RecoveryCandidate] = coordinator.pending()
        self.decisions: Dict[str, RecoveryState] = {}

    def compose(self) -> ComposeResult:
        with Container():
            yield Static(self.dialog_title, classes="dialog-title")
            with VerticalScroll():
                for index, candidate in enumerate(self.candidates):
                    # Autosave ids are not valid widget ids, so rows are addressed by index
                    with Horizontal(classes="recovery-row", id=f"recovery-row-{index}"):
                        yield Label(_describe(candidate), classes="recovery-text")
                        yield Button("Restore", id=f"restore-{index}", variant="primary")
                        yield Button("Discard", id=f"discard-{index}", variant="error")
            with Horizontal(classes="button-container"):
                yield Button("Restore all", id="restore-all", variant="primary")
                yield Button("Close", id="close-button")

    def _candidate_at(self, button_id: str) -> Optional[RecoveryCandidate]:
        try:
            return self.candidates[int(button_id.rsplit("-", 1)[1])]
        except (IndexError, ValueError):
            return None

    def _decide(self, candidate: RecoveryCandidate, restore: bool) -> None:
        try:
            if restore:
                self.coordinator.accept(candidate.id)
            elif self.clear_dismissed:
                self.coordinator.dismiss_and_clear(candidate.id)
            else:
                self.coordinator.dismiss(candidate.id)
        except RecoveryStateError as e:
            logger.warning(f"Recovery decision for '{candidate.id}' ignored: {e}")
            return
        self.decisions[candidate.id] = RecoveryState.RESTORED if restore else RecoveryState.DISMISSED

    def _remove_row(self, index: int) -> None:
        for row in self.query(f"#recovery-row-{index}"):
            row.remove()

    def _finish_if_done(self) -> None:
        if all(c.state is not RecoveryState.PENDING for c in self.candidates):
            self.dismiss(self.decisions)

    def on_button_pressed(self, event: Button.Pressed) -> None:
        """Handle button presses."""
        button_id = event.button.id or ""
        if button_id == "close-button":
            self.dismiss(self.decisions)
        elif button_id == "restore-all":
            for candidate in self.candidates:
                if candidate.state is RecoveryState.PENDING:
                    self._decide(candidate, restore=True)
            self.dismiss(self.decisions)
        elif button_id.startswith(("restore-", "discard-")):
            candidate = self._candidate_at(button_id)
            if candidate is None:
                return
            self._decide(candidate, restore=button_id.startswith("restore-"))
            self._remove_row(self.candidates.index(candidate))
            self._finish_if_done()

#
# End of recovery_dialog.py
########################################################################################################################
