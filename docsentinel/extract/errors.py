"""Extraction errors.

None of these are fatal to a multi-file scan: callers skip the file, log a
warning and continue with the remaining files.
"""


class ExtractError(Exception):
    """Base class for per-file extraction failures."""

    def __init__(self, file_path: str, message: str):
        super().__init__(f"{file_path}: {message}")
        self.file_path = file_path


class UnsupportedLanguage(ExtractError):
    """The file extension maps to no known grammar."""

    def __init__(self, file_path: str, extension: str):
        super().__init__(file_path, f"unsupported language for extension '{extension or '<none>'}'")
        self.extension = extension


class ParseFailure(ExtractError):
    """The grammar parser could not build a usable tree."""

    def __init__(self, file_path: str, reason: str):
        super().__init__(file_path, f"parse failure: {reason}")
        self.reason = reason


class EncodingError(ExtractError):
    """File content is not valid UTF-8 text."""

    def __init__(self, file_path: str):
        super().__init__(file_path, "content is not valid UTF-8 text")
