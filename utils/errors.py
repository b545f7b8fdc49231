"""
Exceptions raised by the content store and the import/export engine.

Structural errors (DuplicateNameError, InvalidMoveError, TransferError and
its subclasses) are raised before anything is written, so callers can show
the message and let the user correct the input.
"""


class FlashFlowError(Exception):
    """Base class for every error the core reports to its callers."""


class DuplicateNameError(FlashFlowError):
    def __init__(self, name: str, parent_name: str | None = None):
        self.name = name
        self.parent_name = parent_name
        if parent_name is None:
            message = f"An item named '{name}' already exists at the root level."
        else:
            message = f"An item named '{name}' already exists in '{parent_name}'."
        super().__init__(message)


class InvalidMoveError(FlashFlowError):
    def __init__(self, message: str = "Cannot move a category into itself or its own subcategory."):
        super().__init__(message)


# ── Import / export ───────────────────────────────────────────

class TransferError(FlashFlowError):
    """Import source could not be used. Nothing was imported."""


class InvalidFormatError(TransferError):
    def __init__(self, message: str = "The file format is not recognized."):
        super().__init__(message)


class EmptyFileError(TransferError):
    def __init__(self, message: str = "The file contains no importable data."):
        super().__init__(message)


class DecodeError(TransferError):
    def __init__(self, message: str = "The file could not be decoded."):
        super().__init__(message)


class TransferCancelled(TransferError):
    def __init__(self, message: str = "The transfer was cancelled."):
        super().__init__(message)


# ── Media ─────────────────────────────────────────────────────

class MediaIOError(FlashFlowError):
    def __init__(self, reference: str, reason: str = ''):
        self.reference = reference
        detail = f": {reason}" if reason else ''
        super().__init__(f"Media '{reference}' could not be processed{detail}")
