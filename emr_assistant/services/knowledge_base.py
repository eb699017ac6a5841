"""
Knowledge base document loading
"""
from pathlib import Path
from typing import Union

import structlog

logger = structlog.get_logger()


class KnowledgeBaseStore:
    """Reads the static knowledge document. No caching: every call hits the file."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def exists(self) -> bool:
        return self.path.is_file()

    def load(self) -> str:
        """
        Return the raw knowledge text, or an empty string when the file is
        missing or unreadable
        """
        if not self.exists():
            logger.warning("Knowledge base file not found", path=str(self.path))
            return ""

        try:
            return self.path.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            logger.error("Failed to read knowledge base", path=str(self.path), error=str(e))
            return ""
