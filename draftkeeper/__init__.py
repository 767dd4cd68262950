"""
draftkeeper - debounced auto-save and crash recovery for Textual forms and editors

Drafts typed into tracked inputs, text areas and forms are persisted after a
quiet period into a session or durable store (optionally compressed and
encrypted, with expiry), and offered back for restoration after a restart.
"""

__version__ = "0.1.0"
__license__ = "AGPLv3+"

# Version tuple for programmatic comparison
VERSION_TUPLE = (0, 1, 0)

__all__ = [
    "__version__",
    "__license__",
    "VERSION_TUPLE",
]
