from .scanner import Scanner, ScanOptions, ScanSummary, ScanTargetError, ScanTargetNotFound, ScanTargetNotADirectory
from .index.store import IndexStore, IndexNotFound, StorageError, FileRecord, DuplicateGroup
from .index.settings import IndexSettings, SettingsError
from .report.export import ExportError
from .utils.hashing import Fingerprint, fingerprint
