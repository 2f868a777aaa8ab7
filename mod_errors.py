"""
Mod Manager Errors
Typed failures raised by the mod manager components
"""

__all__ = [
    'ModManagerError',
    'NotFoundError',
    'VersionNotFoundError',
    'BackupNotFoundError',
    'InvalidInputError',
    'UnsupportedArchiveError',
    'InvalidModContentError',
    'ConflictError',
    'HasDependentsError',
    'ModIOError',
    'ArchiveReadError',
    'RemoteError',
    'RateLimitError',
    'StateCorruptionError',
]


class ModManagerError(Exception):
    """Root of every error the mod manager raises on purpose.

    Attributes:
        kind: str - error family shown to the presentation layer
        path: Optional str - offending path or name, when there is one
    """
    kind = 'error'

    def __init__(self, message, path=None):
        super().__init__(message)
        self.message = message
        self.path = str(path) if path is not None else None

    def __str__(self):
        return self.message


# ── not-found ─────────────────────────────────────────────────────────────────

class NotFoundError(ModManagerError):
    """Archive, version, backup, row or path does not exist."""
    kind = 'not-found'


class VersionNotFoundError(NotFoundError):
    """Release tag is unknown to the remote feed."""


class BackupNotFoundError(NotFoundError):
    """No backup is bound to the requested original path."""


# ── invalid-input ─────────────────────────────────────────────────────────────

class InvalidInputError(ModManagerError):
    kind = 'invalid-input'


class UnsupportedArchiveError(InvalidInputError):
    """Only zip, tar and tar.gz archives are accepted."""


class InvalidModContentError(InvalidInputError):
    """Extracted tree holds no Lua script, so it is not a Balatro mod."""


# ── conflict ──────────────────────────────────────────────────────────────────

class ConflictError(ModManagerError):
    kind = 'conflict'


class HasDependentsError(ConflictError):
    """Framework removal blocked because other mods still depend on it."""

    def __init__(self, name, dependents):
        self.name = name
        self.dependents = sorted(dependents)
        super().__init__(
            f'Use cascade uninstall to remove {name} with {len(self.dependents)} dependents',
            path=name
        )


# ── io-failure ────────────────────────────────────────────────────────────────

class ModIOError(ModManagerError):
    kind = 'io-failure'


class ArchiveReadError(ModIOError):
    """Archive could not be opened or decoded."""


# ── remote-failure ────────────────────────────────────────────────────────────

class RemoteError(ModManagerError):
    kind = 'remote-failure'


class RateLimitError(RemoteError):
    """GitHub API refused the request because the rate limit was hit."""


# ── state-corruption ──────────────────────────────────────────────────────────

class StateCorruptionError(ModManagerError):
    """Record store is unreadable or its lock could not be taken."""
    kind = 'state-corruption'
