class GitsmithException(Exception):
    """Base exception for all gitsmith errors."""
    pass

class InvalidKeyException(GitsmithException):
    """Raised when a secret key cannot be parsed as nsec or hex."""
    def __init__(self, message: str = "Invalid secret key. Expected an nsec or 64-character hex string."):
        super().__init__(message)

class NoActiveAccountException(GitsmithException):
    """Raised when an operation needs an active account and none is set."""
    def __init__(self, message: str = "No active account. Please login first."):
        super().__init__(message)

class DecryptionFailedException(GitsmithException):
    """
    Raised when the active key cannot be decrypted.
    The message never tells a missing account apart from a wrong password.
    """
    def __init__(self):
        super().__init__("Wrong password or account not found.")

class InvalidIdentifierException(GitsmithException):
    """Raised when a repository identifier contains characters outside [a-z0-9_-]."""
    def __init__(self, identifier: str):
        self.identifier = identifier
        super().__init__(f"Invalid repository identifier: {identifier!r}. Use only a-z, 0-9, '-' and '_'.")

class GitCommandException(GitsmithException):
    """Raised when a git subprocess fails."""
    def __init__(self, command: str, stderr: str = ""):
        self.command = command
        self.stderr = stderr
        super().__init__(f"git {command} failed: {stderr.strip() or 'unknown error'}")

class EmptyRepositoryException(GitsmithException):
    """Raised when a repository has no commits."""
    def __init__(self, repo_path: str):
        self.repo_path = repo_path
        super().__init__(f"No commits found in repository at {repo_path}")

class InsufficientHistoryException(GitsmithException):
    """Raised when a patch range asks for more commits than the history has."""
    def __init__(self, requested: str, available: int):
        self.requested = requested
        self.available = available
        super().__init__(f"Not enough commits for {requested} (history has {available}).")

class NoPatchesException(GitsmithException):
    """Raised by the patch assembler for an empty patch list. Callers treat it as a no-op."""
    def __init__(self):
        super().__init__("No patches to send.")

class MalformedMessageException(GitsmithException):
    """Raised when a message does not have the shape its kind requires."""
    pass

class TransportException(GitsmithException):
    """Raised when none of the relays could be reached."""
    def __init__(self, failures):
        self.failures = failures
        details = ", ".join(f"{endpoint}: {reason}" for endpoint, reason in failures) or "no relays given"
        super().__init__(f"Could not reach any relay ({details})")
