from pathlib import Path
import re
from typing import List
import structlog

logger = structlog.get_logger()


class SecurityError(Exception):
    """Base class for security-related errors."""

    pass


def sanitize_filename(name: str, max_length: int = 200) -> str:
    """Make a remote identifier safe for use as a filename

    Keeps alphanumerics, dash, underscore and dot; strips directory
    components and leading dots.
    """
    # Remove any directory components
    name = Path(name.replace("\\", "/")).name
    safe_name = re.sub(r"[^a-zA-Z0-9._-]", "_", name)
    # Prevent hidden files
    if safe_name.startswith("."):
        safe_name = "_" + safe_name
    return safe_name[:max_length] or "untitled"


class PathSanitizer:
    """Secure path validation for download destinations"""

    def __init__(self, allowed_bases: List[Path]):
        """Initialize with allowed base directories"""
        self.allowed_bases = [p.resolve() for p in allowed_bases]

    def safe_path(self, base_dir: Path, user_input: str) -> Path:
        """Get safe path within base directory

        Prevents:
        - Directory traversal (../)
        - Absolute path injection
        - Symlink attacks

        Raises:
            SecurityError: If path is outside base_dir
        """
        base_dir = base_dir.resolve()

        if not any(
            base_dir == allowed or base_dir.is_relative_to(allowed)
            for allowed in self.allowed_bases
        ):
            raise SecurityError(f"Base directory not in allowed list: {base_dir}")

        # Remove dangerous characters (null byte)
        safe_input = user_input.replace("\0", "")

        requested = (base_dir / safe_input).resolve()

        try:
            requested.relative_to(base_dir)
        except ValueError:
            logger.warning(
                "path_traversal_blocked",
                base_dir=str(base_dir),
                user_input=user_input,
                resolved=str(requested),
            )
            raise SecurityError(f"Path traversal attempt detected: {user_input}")

        return requested
