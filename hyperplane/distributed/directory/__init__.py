from .session_directory import (
    DirectoryEntry as DirectoryEntry,
    SessionDirectory as SessionDirectory,
)
