# share_dumper/core/exceptions.py

IGNORABLE_EXIT_CODES = (23, 24)


class InvalidTransitionError(Exception):
    """Raised when a job state transition is not allowed."""
    def __init__(self, job_id: str, from_state: str, to_state: str):
        self.job_id = job_id
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(
            f"Invalid state transition for job {job_id}: "
            f"Cannot move from '{from_state}' to '{to_state}'."
        )


class JobNotFoundError(KeyError):
    """Raised when a job id is not in the queue."""
    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(job_id)

    def __str__(self) -> str:
        return f"Job {self.job_id} not found"


# --- Copy errors ---

class CopyError(Exception):
    """Base exception for copy operation failures."""
    pass


class LaunchFailure(CopyError):
    """Raised when an external binary is missing or cannot be executed."""
    def __init__(self, command: str, reason: str = ""):
        self.command = command
        self.reason = reason
        detail = f": {reason}" if reason else ""
        super().__init__(f"Failed to start {command}{detail}")


class CopyCancelled(CopyError):
    """Raised when the user cancelled the operation."""
    def __init__(self):
        super().__init__("Operation was cancelled")


class ToolFailure(CopyError):
    """Raised when the transfer tool exits with a non-ignorable code."""
    def __init__(self, exit_code: int, message: str):
        self.exit_code = exit_code
        self.message = message
        if exit_code in IGNORABLE_EXIT_CODES:
            text = f"Completed with minor file I/O errors (exit code {exit_code})"
        else:
            text = f"Rsync failed with exit code {exit_code}: {message.strip()}"
        super().__init__(text)


class LogCreationFailure(CopyError):
    """Raised when the per-job log file cannot be created."""
    def __init__(self, path: str, reason: str = ""):
        self.path = path
        detail = f": {reason}" if reason else ""
        super().__init__(f"Failed to create log file {path}{detail}")


# --- SMB errors ---

class SMBConnectionError(Exception):
    """Base exception for connection, enumeration and mount failures."""
    pass


class EnumerationFailure(SMBConnectionError):
    def __init__(self, detail: str = ""):
        self.detail = detail
        message = "Failed to list shares on the server."
        if detail:
            message = f"{message} {detail}"
        super().__init__(message)


class AuthenticationFailed(EnumerationFailure):
    """The server rejected the username or password."""
    def __init__(self, detail: str = ""):
        self.detail = detail
        SMBConnectionError.__init__(self, "Authentication failed. Please check your username and password.")


class HostUnreachable(SMBConnectionError):
    """Enumeration failed and no diagnostics check could reach the host."""
    def __init__(self, host: str, detail: str = ""):
        self.host = host
        self.detail = detail
        super().__init__(f"Cannot reach the server {host}. Please check the network connection.")


class MountFailure(SMBConnectionError):
    def __init__(self, share_name: str, detail: str = ""):
        self.share_name = share_name
        self.detail = detail
        super().__init__(f"Failed to mount share '{share_name}'.")


class UnmountFailure(SMBConnectionError):
    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Failed to unmount '{path}'.")


class NoCredentialsStored(SMBConnectionError):
    def __init__(self):
        super().__init__("No credentials stored. Please connect to the server first.")


# --- Secret store ---

class SecretNotFound(LookupError):
    """Raised when no secret is stored for an account."""
    def __init__(self, account: str, host: str):
        self.account = account
        self.host = host
        super().__init__(f"Credentials not found for {account}@{host}")
