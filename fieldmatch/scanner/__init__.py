"""Field detection: page element snapshots, filtering and classification."""

from .classifier import Classification, FieldClassifier
from .elements import collect_page_elements, highlight_fields, locate_field, observe_mutations
from .scanner import FieldScanner, PageFieldWatcher, RescanDebouncer

__all__ = [
    "Classification",
    "FieldClassifier",
    "FieldScanner",
    "PageFieldWatcher",
    "RescanDebouncer",
    "collect_page_elements",
    "highlight_fields",
    "locate_field",
    "observe_mutations",
]
