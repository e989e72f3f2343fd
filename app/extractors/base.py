"""
Abstract base class for all asset extractors.
Every extractor turns the bytes of one uploaded file into RawAsset records.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional

from app.observability.cost_tracker import OracleUsageTracker
from app.oracles.classification import ClassificationOracle, DisabledClassificationOracle
from app.schemas.contracts import ExtractionResult


class ParsingError(Exception):
    """Raised when a file is unreadable, empty or has no recognisable structure."""

    def __init__(self, reason: str, file_name: str, error_code: str = "PARSE_FAILED"):
        self.reason = reason
        self.message = reason
        self.file_name = file_name
        self.error_code = error_code
        super().__init__(f"{file_name}: {reason}")


@dataclass
class LoadedDocument:
    """
    A file after the cheap, structural read.

    document_text is available as soon as load() returns so the statement date
    can be resolved while assets are still being extracted.
    """
    file_name: str
    document_text: str = ""
    payload: Any = None
    page_count: Optional[int] = None
    meta: dict = field(default_factory=dict)


class AssetExtractor(ABC):
    """
    Every extractor must:
    1. Accept raw bytes and the original file name
    2. Return ExtractionResult with only valid RawAsset records
    3. Count the rows it had to drop
    4. Raise ParsingError on unrecoverable structure (never crash the batch)
    """

    extractor_name: str = "base"

    def __init__(
        self,
        oracle: Optional[ClassificationOracle] = None,
        tracker: Optional[OracleUsageTracker] = None,
    ):
        self.oracle = oracle or DisabledClassificationOracle()
        self.tracker = tracker

    @abstractmethod
    async def load(self, data: bytes, file_name: str) -> LoadedDocument:
        """Structural read of the file. Raises ParsingError."""
        ...

    @abstractmethod
    async def extract_assets(self, doc: LoadedDocument) -> ExtractionResult:
        """Produce raw assets from a loaded document. Raises ParsingError."""
        ...

    async def extract(self, data: bytes, file_name: str) -> ExtractionResult:
        doc = await self.load(data, file_name)
        return await self.extract_assets(doc)
