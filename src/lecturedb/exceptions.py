"""
Exception classes for query translation and object storage access.

Backend errors are normalized into a small stable taxonomy. Each dialect
strategy carries a lookup table (`error_kinds`) from backend-specific numeric
codes to an `ErrorKind`; `normalize_error` consults it and returns the
exception the caller should see.
"""
import re
from enum import Enum

DUPLICATE_ENTRY_CODE = 'ER_DUP_ENTRY'

# Native error numbers embedded in ODBC diagnostic records:
# '[23000] [...][SQL Server]Violation of ... (2627) (SQLExecDirectW)'
_NATIVE_CODE = re.compile(r'\((\d+)\)\s*(?:\(SQL\w*\))?\s*(?:;|$)')


class ErrorKind(Enum):
    """Normalized backend error kinds."""
    DUPLICATE_ENTRY = DUPLICATE_ENTRY_CODE
    PERMISSION_DENIED = 'ER_PERMISSION_DENIED'


class DatabaseError(Exception):
    """Base class for all database module errors.
    """


class ConnectionFailure(DatabaseError):
    """Error establishing or maintaining the pooled database connection.
    """


class PlaceholderMismatchError(DatabaseError):
    """Placeholder count in a statement disagrees with the parameter count.
    """

    def __init__(self, placeholders: int, params: int) -> None:
        self.placeholders = placeholders
        self.params = params
        super().__init__(
            f'Parameter count mismatch: SQL needs {placeholders} '
            f'but {params} were provided')


class BackendError(DatabaseError):
    """Backend failure propagated with its original code and message.
    """

    code: str | None = None

    def __init__(self, message: str, backend_code: int | None = None,
                 orig: BaseException | None = None,
                 kind: ErrorKind | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.backend_code = backend_code
        self.orig = orig
        self.kind = kind


class DuplicateEntryError(BackendError):
    """Unique constraint or unique index violation.
    """
    code = DUPLICATE_ENTRY_CODE

    def __init__(self, message: str, backend_code: int | None = None,
                 orig: BaseException | None = None) -> None:
        super().__init__(message, backend_code, orig, ErrorKind.DUPLICATE_ENTRY)


class ObjectStorageError(Exception):
    """Base class for object storage errors.
    """


class ReferenceResolutionError(ObjectStorageError):
    """Stored object reference is missing or cannot be turned into a key.
    """


class SigningError(ObjectStorageError):
    """Signed access URL could not be generated.
    """


class UploadRejectedError(ObjectStorageError):
    """Upload failed validation (content type or size).
    """


def native_error_codes(exc: BaseException) -> list[int]:
    """Extract backend native error numbers from a DBAPI exception.

    pyodbc embeds the number in the diagnostic message; sqlite3 exposes
    ``sqlite_errorcode``.
    """
    codes: list[int] = []
    errorcode = getattr(exc, 'sqlite_errorcode', None)
    if isinstance(errorcode, int):
        codes.append(errorcode)
    for arg in getattr(exc, 'args', ()):
        if isinstance(arg, str):
            for diag in arg.split(';'):
                codes.extend(int(m) for m in _NATIVE_CODE.findall(diag.strip()))
    return codes


def classify_error(exc: BaseException, error_kinds: dict[int, ErrorKind]) -> tuple[ErrorKind | None, int | None]:
    """Map a DBAPI exception to an `ErrorKind` using a dialect lookup table.

    Returns the kind (or None) and the backend code that decided it (or the
    first code found when no kind matched).
    """
    codes = native_error_codes(exc)
    for code in codes:
        if code in error_kinds:
            return error_kinds[code], code
    return None, codes[0] if codes else None


def normalize_error(exc: BaseException, error_kinds: dict[int, ErrorKind]) -> BackendError:
    """Build the normalized exception for a backend failure.

    :param exc: The driver exception (``orig`` of a SQLAlchemy DBAPIError).
    :param error_kinds: Dialect lookup table of backend code -> kind.
    :returns: DuplicateEntryError for unique violations, BackendError otherwise.
    """
    kind, code = classify_error(exc, error_kinds)
    message = str(exc)
    if kind is ErrorKind.DUPLICATE_ENTRY:
        return DuplicateEntryError(message, backend_code=code, orig=exc)
    return BackendError(message, backend_code=code, orig=exc, kind=kind)
