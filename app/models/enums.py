"""
Python enums for the asset pipeline.
Values are persisted as plain text columns; keep them stable.
"""

from enum import Enum


class AssetClass(str, Enum):
    EQUITY = "equity"
    DEBT = "debt"
    CASH = "cash"
    REAL_ESTATE = "real_estate"
    OTHER = "other"


class RiskLevel(str, Enum):
    VERY_LOW = "very_low"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    VERY_HIGH = "very_high"


class VerifiedVia(str, Enum):
    LOOKUP = "lookup"
    RULE = "rule"
    AI = "ai"
    MANUAL = "manual"


class SecurityType(str, Enum):
    EQUITY = "equity"
    MUTUAL_FUND = "mutual_fund"
    BOND = "bond"
    ETF = "etf"
    COMMODITY = "commodity"
    UNKNOWN = "unknown"


class FileFormat(str, Enum):
    CSV = "csv"
    SPREADSHEET = "spreadsheet"
    PDF = "pdf"


class FileStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


class DateConfidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    MANUAL = "manual"


class DateSource(str, Enum):
    DOCUMENT_CONTENT = "document_content"
    FILENAME = "filename"
    USER_INPUT = "user_input"
    UPLOAD_TIMESTAMP = "upload_timestamp"


class MatchType(str, Enum):
    """Duplicate match strength."""
    NAME = "name"
    NAME_AND_VALUE = "name_and_value"
    EXACT = "exact"


class CandidateKind(str, Enum):
    STAGED = "staged"
    HOLDING = "holding"


class DuplicateRecommendation(str, Enum):
    MERGE = "merge"
    KEEP_BOTH = "keep_both"
    ASK_USER = "ask_user"


class DuplicateAction(str, Enum):
    KEEP_BOTH = "keep_both"
    MERGE = "merge"
    DELETE_ONE = "delete_one"
    IGNORE = "ignore"


class ConflictAction(str, Enum):
    REPLACE_OLD = "replace_old"
    MERGE_VALUES = "merge_values"
    KEEP_BOTH = "keep_both"
    SKIP_NEW = "skip_new"


class SnapshotMatchType(str, Enum):
    EXACT = "exact"
    CLOSE = "close"
    NONE = "none"


class SuggestedAction(str, Enum):
    MERGE = "merge"
    PROMPT = "prompt"
    CREATE_NEW = "create_new"


class MergeDecision(str, Enum):
    MERGE = "merge"
    CREATE_NEW = "create_new"


class UploadStatus(str, Enum):
    PENDING = "pending"
    IN_REVIEW = "in_review"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class SourceType(str, Enum):
    UPLOAD = "upload"
    MANUAL = "manual"
    SYSTEM = "system"
