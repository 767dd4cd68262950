# app.py
# Description: Minimal Textual note composer wired to auto-save and draft recovery
#
# Imports
import sys
from datetime import datetime
from typing import Dict, Optional
#
# 3rd-Party Imports
from loguru import logger
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal, Vertical
from textual.css.query import NoMatches
from textual.widgets import Button, Footer, Header, Label
#
# Local Imports
from .AutoSave.entry import AutoSaveEntry
from .AutoSave.manager import AutoSaveManager, get_autosave_manager, init_autosave_manager
from .AutoSave.recovery import RecoveryCoordinator, RecoveryState
from .exceptions import ConfigurationError
from .Widgets.autosave_fields import AutoSaveInput, AutoSaveTextArea
from .Widgets.recovery_dialog import RecoveryDialog
#
#######################################################################################################################
#
# Classes:

COMPOSE_PATH = "/compose"


class DraftKeeperApp(App):
    """A title + body composer whose drafts survive restarts."""

    TITLE = "draftkeeper"

    CSS = """
    #composer {
        padding: 1 2;
    }

    #note-body {
        height: 1fr;
    }

    #composer-actions {
        height: 3;
        align: right middle;
    }

    #save-status {
        width: 1fr;
        color: $text-muted;
    }
    """

    BINDINGS = [
        Binding("ctrl+s", "submit", "Submit"),
        Binding("ctrl+r", "recover", "Recover drafts"),
        Binding("ctrl+q", "quit", "Quit"),
    ]

    def __init__(self, manager: Optional[AutoSaveManager] = None, **kwargs):
        super().__init__(**kwargs)
        self.manager = manager or get_autosave_manager()
        self.coordinator = RecoveryCoordinator(self.manager)
        self.manager.on_saved = self._on_draft_saved
        self.manager.on_save_failed = self._on_draft_save_failed
        self.submitted: list = []
        self.status_text = ""

    def compose(self) -> ComposeResult:
        yield Header()
        with Vertical(id="composer"):
            yield AutoSaveInput(
                "note-title",
                COMPOSE_PATH,
                manager=self.manager,
                coordinator=self.coordinator,
                auto_restore=False,
                label="Title",
                placeholder="Title",
                id="note-title",
            )
            yield AutoSaveTextArea(
                autosave_id="note-body",
                path=COMPOSE_PATH,
                manager=self.manager,
                coordinator=self.coordinator,
                auto_restore=False,
                label="Body",
                id="note-body",
            )
            with Horizontal(id="composer-actions"):
                yield Label("", id="save-status")
                yield Button("Submit", id="submit-button", variant="primary")
        yield Footer()

    def on_mount(self) -> None:
        if not self.manager.storage_available:
            self._set_status("Draft storage unavailable; drafts will not survive a restart")
        self.call_after_refresh(self.action_recover)

    async def action_quit(self) -> None:
        # Bound fields drop their debounced writes when unmounted, so flush before exiting
        await self.manager.flush_all()
        self.exit()

    async def on_unmount(self) -> None:
        await self.manager.shutdown(flush=True)

    # --- Status line ---

    def _set_status(self, text: str) -> None:
        self.status_text = text
        try:
            self.query_one("#save-status", Label).update(text)
        except NoMatches:
            logger.debug("Status line not mounted yet")

    def _on_draft_saved(self, entry: AutoSaveEntry) -> None:
        saved = datetime.fromtimestamp(entry.updated_at).strftime("%H:%M:%S")
        self._set_status(f"Draft saved at {saved}")

    def _on_draft_save_failed(self, autosave_id: str) -> None:
        self._set_status("Draft could not be saved")

    # --- Actions ---

    def action_recover(self) -> None:
        if not self.coordinator.scan(COMPOSE_PATH):
            return
        self.push_screen(RecoveryDialog(self.coordinator), self._on_recovery_closed)

    def _on_recovery_closed(self, decisions: Optional[Dict[str, RecoveryState]]) -> None:
        restored = [i for i, state in (decisions or {}).items() if state is RecoveryState.RESTORED]
        if restored:
            self.notify(f"Restored {len(restored)} draft(s)")

    def action_submit(self) -> None:
        title = self.query_one("#note-title", AutoSaveInput)
        body = self.query_one("#note-body", AutoSaveTextArea)
        self.submitted.append((title.value, body.text))
        logger.info(f"Submitted note ({len(body.text)} chars)")

        title.value = ""
        body.load_text("")
        title.binding.clear_auto_save()
        body.binding.clear_auto_save()
        self._set_status("Submitted")

    def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "submit-button":
            self.action_submit()


def main_cli_runner() -> None:
    """Entry point for the draftkeeper command."""
    from .config import get_log_file_path, get_setting, load_config
    from .logging_config import configure_logging

    config = load_config()
    # The TUI owns the terminal, so logs go to the file sink only
    configure_logging(
        level=get_setting("logging", "log_level", "INFO"),
        log_file=get_log_file_path(config),
        console=False,
    )
    try:
        manager = init_autosave_manager()
    except ConfigurationError as e:
        print(f"draftkeeper: {e}", file=sys.stderr)
        sys.exit(1)
    DraftKeeperApp(manager).run()


if __name__ == "__main__":
    main_cli_runner()

#
# End of app.py
########################################################################################################################
