# autosave_fields.py
# Description: Binds Textual input widgets to the auto-save manager
#
# Imports
import json
from abc import ABC, abstractmethod
from typing import Dict, Optional, Union
#
# 3rd-Party Imports
from loguru import logger
from textual import on
from textual.containers import Vertical
from textual.message import Message
from textual.widget import Widget
from textual.widgets import Checkbox, Input, TextArea
#
# Local Imports
from ..AutoSave.entry import EntryMetadata
from ..AutoSave.manager import AutoSaveManager, SaveResult, get_autosave_manager
from ..AutoSave.recovery import RecoveryCoordinator, RecoveryState
#
#######################################################################################################################
#
# Element adapters:

class ElementAdapter(ABC):
    """Reads and writes the text of one bound element."""

    element_type: str = "input"

    @abstractmethod
    def get_value(self) -> str:
        ...

    @abstractmethod
    def set_value(self, content: str) -> None:
        ...


class InputElement(ElementAdapter):
    element_type = "input"

    def __init__(self, widget: Input):
        self.widget = widget

    def get_value(self) -> str:
        return self.widget.value

    def set_value(self, content: str) -> None:
        self.widget.value = content


class TextAreaElement(ElementAdapter):
    element_type = "textarea"

    def __init__(self, widget: TextArea):
        self.widget = widget

    def get_value(self) -> str:
        return self.widget.text

    def set_value(self, content: str) -> None:
        self.widget.load_text(content)


class FormElement(ElementAdapter):
    """
    A container of fields saved as one draft.

    The draft is a JSON object of field values keyed by widget id. Fields
    without an id are not saved. Checkbox values are stored as booleans.
    """

    element_type = "form"

    def __init__(self, container: Widget):
        self.container = container

    def _fields(self) -> Dict[str, Union[Input, TextArea, Checkbox]]:
        fields = {}
        for widget in self.container.query("Input, TextArea, Checkbox"):
            if widget.id:
                fields[widget.id] = widget
        return fields

    def get_value(self) -> str:
        values = {}
        for field_id, widget in self._fields().items():
            if isinstance(widget, TextArea):
                values[field_id] = widget.text
            else:
                values[field_id] = widget.value
        return json.dumps(values, sort_keys=True, ensure_ascii=False)

    def set_value(self, content: str) -> None:
        try:
            values = json.loads(content)
        except json.JSONDecodeError as e:
            logger.warning(f"Form draft for '{self.container.id}' is not valid JSON, not restoring: {e}")
            return
        if not isinstance(values, dict):
            logger.warning(f"Form draft for '{self.container.id}' is not an object, not restoring")
            return

        fields = self._fields()
        for field_id, value in values.items():
            widget = fields.get(field_id)
            if widget is None:
                logger.debug(f"Form draft field '{field_id}' no longer exists, skipping")
                continue
            if isinstance(widget, TextArea):
                widget.load_text(str(value))
            elif isinstance(widget, Checkbox):
                widget.value = bool(value)
            else:
                widget.value = str(value)

#
# Binding:

class AutoSaveBinding:
    """
    Connects one element to the manager under a fixed auto-save id.

    Change notifications forward the element's current value to
    `AutoSaveManager.track_change`. Until the user actually edits, a value equal
    to the baseline (the value at bind time, or the last restored or cleared
    value) is not tracked, so mounting or restoring never writes a draft.
    """

    def __init__(
        self,
        manager: AutoSaveManager,
        autosave_id: str,
        path: str = "",
        coordinator: Optional[RecoveryCoordinator] = None,
        auto_restore: bool = True,
        metadata: Optional[EntryMetadata] = None,
    ):
        if not autosave_id:
            raise ValueError("autosave_id must not be empty")
        self.manager = manager
        self.autosave_id = autosave_id
        self.path = path
        self.coordinator = coordinator
        self.auto_restore = auto_restore
        self.metadata = metadata
        self.element: Optional[ElementAdapter] = None
        self._baseline: Optional[str] = None

    def set_element_ref(self, element: Optional[ElementAdapter]) -> None:
        self.element = element
        self._baseline = element.get_value() if element is not None else None
        if element is not None and self.metadata is None:
            self.metadata = EntryMetadata(element_type=element.element_type)

    def on_change(self) -> None:
        if self.element is None:
            return
        content = self.element.get_value()
        if content == self._baseline and not self.manager.has_unsaved_changes(self.autosave_id):
            return
        self.manager.track_change(self.autosave_id, content, self.path, self.metadata)

    async def save_content(self) -> SaveResult:
        """Track the element's current value and write it without waiting for the debounce."""
        self.on_change()
        return await self.manager.force_save(self.autosave_id)

    def restore_content(self, content: Optional[str] = None) -> bool:
        """Put `content` (or the stored draft) into the element. Returns True if anything was applied."""
        if self.element is None:
            logger.debug(f"restore_content('{self.autosave_id}') with no element bound")
            return False
        if content is None:
            entry = self.manager.get_entry(self.autosave_id)
            if entry is None:
                return False
            content = entry.content
        self.element.set_value(content)
        self._baseline = self.element.get_value()
        return True

    def clear_auto_save(self) -> None:
        """Forget the draft after a submit. Reset the element first; its value becomes the new baseline."""
        self.manager.clear_entry(self.autosave_id)
        if self.element is not None:
            self._baseline = self.element.get_value()

    def mount(self) -> Optional[str]:
        """
        Register for recovery and, with auto_restore, apply a pending draft.

        Returns:
            The restored content, or None when nothing was restored
        """
        if self.coordinator is not None:
            self.coordinator.register_applier(self.autosave_id, self.restore_content)
        if not self.auto_restore or not self.manager.config.enable_recovery:
            return None

        if self.coordinator is not None:
            self.coordinator.scan(self.path, ids=[self.autosave_id])
            candidate = self.coordinator.get_candidate(self.autosave_id)
            if candidate is None or candidate.state is not RecoveryState.PENDING:
                return None
            return self.coordinator.accept(self.autosave_id)

        entry = self.manager.get_entry(self.autosave_id)
        if entry is None or entry.path != self.path or not entry.content:
            return None
        self.restore_content(entry.content)
        logger.info(f"Restored draft '{self.autosave_id}'")
        return entry.content

    def unmount(self) -> None:
        """Drop any debounced write so it cannot land after the element is gone."""
        self.manager.cancel_pending(self.autosave_id)
        if self.coordinator is not None:
            self.coordinator.unregister_applier(self.autosave_id)

#
# Widgets:

class AutoSaveRestored(Message):
    """Posted by an auto-save widget after it restored a draft on mount."""

    def __init__(self, autosave_id: str, content: str) -> None:
        self.autosave_id = autosave_id
        self.content = content
        super().__init__()


def _make_binding(
    autosave_id: str,
    path: str,
    manager: Optional[AutoSaveManager],
    coordinator: Optional[RecoveryCoordinator],
    auto_restore: bool,
    element_type: str,
    form_name: Optional[str],
    label: Optional[str],
) -> AutoSaveBinding:
    return AutoSaveBinding(
        manager or get_autosave_manager(),
        autosave_id,
        path=path,
        coordinator=coordinator,
        auto_restore=auto_restore,
        metadata=EntryMetadata(element_type=element_type, form_name=form_name, label=label),
    )


class AutoSaveInput(Input):
    """An Input whose value is auto-saved under `autosave_id`."""

    def __init__(
        self,
        autosave_id: str,
        path: str = "",
        *,
        manager: Optional[AutoSaveManager] = None,
        coordinator: Optional[RecoveryCoordinator] = None,
        auto_restore: bool = True,
        save_on_blur: bool = True,
        form_name: Optional[str] = None,
        label: Optional[str] = None,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.binding = _make_binding(
            autosave_id, path, manager, coordinator, auto_restore, "input", form_name, label
        )
        self.save_on_blur = save_on_blur

    def on_mount(self) -> None:
        self.binding.set_element_ref(InputElement(self))
        restored = self.binding.mount()
        if restored is not None:
            self.post_message(AutoSaveRestored(self.binding.autosave_id, restored))

    def on_unmount(self) -> None:
        self.binding.unmount()

    def on_input_changed(self, event: Input.Changed) -> None:
        if event.input is self:
            self.binding.on_change()

    def on_blur(self) -> None:
        if self.save_on_blur:
            self.run_worker(self.binding.save_content(), group="autosave")


class AutoSaveTextArea(TextArea):
    """A TextArea whose text is auto-saved under `autosave_id`."""

    def __init__(
        self,
        text: str = "",
        *,
        autosave_id: str,
        path: str = "",
        manager: Optional[AutoSaveManager] = None,
        coordinator: Optional[RecoveryCoordinator] = None,
        auto_restore: bool = True,
        save_on_blur: bool = True,
        form_name: Optional[str] = None,
        label: Optional[str] = None,
        **kwargs,
    ):
        super().__init__(text, **kwargs)
        self.binding = _make_binding(
            autosave_id, path, manager, coordinator, auto_restore, "textarea", form_name, label
        )
        self.save_on_blur = save_on_blur

    def on_mount(self) -> None:
        self.binding.set_element_ref(TextAreaElement(self))
        restored = self.binding.mount()
        if restored is not None:
            self.post_message(AutoSaveRestored(self.binding.autosave_id, restored))

    def on_unmount(self) -> None:
        self.binding.unmount()

    def on_text_area_changed(self, event: TextArea.Changed) -> None:
        if event.text_area is self:
            self.binding.on_change()

    def on_blur(self) -> None:
        if self.save_on_blur:
            self.run_worker(self.binding.save_content(), group="autosave")


class AutoSaveForm(Vertical):
    """
    A container whose descendant fields are auto-saved together as one draft.

    Put plain Input, TextArea and Checkbox widgets (with ids) inside it; do not
    nest other auto-save widgets.
    """

    DEFAULT_CSS = """
    AutoSaveForm {
        height: auto;
    }
    """

    def __init__(
        self,
        *children: Widget,
        autosave_id: str,
        path: str = "",
        manager: Optional[AutoSaveManager] = None,
        coordinator: Optional[RecoveryCoordinator] = None,
        auto_restore: bool = True,
        form_name: Optional[str] = None,
        label: Optional[str] = None,
        **kwargs,
    ):
        super().__init__(*children, **kwargs)
        self.binding = _make_binding(
            autosave_id, path, manager, coordinator, auto_restore, "form", form_name or autosave_id, label
        )

    def on_mount(self) -> None:
        self.binding.set_element_ref(FormElement(self))
        restored = self.binding.mount()
        if restored is not None:
            self.post_message(AutoSaveRestored(self.binding.autosave_id, restored))

    def on_unmount(self) -> None:
        self.binding.unmount()

    @on(Input.Changed)
    @on(TextArea.Changed)
    @on(Checkbox.Changed)
    def _field_changed(self) -> None:
        self.binding.on_change()

    async def save(self) -> SaveResult:
        return await self.binding.save_content()

    def clear_auto_save(self) -> None:
        self.binding.clear_auto_save()

#
# End of autosave_fields.py
########################################################################################################################
