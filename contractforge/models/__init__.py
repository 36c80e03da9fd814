"""contractforge data models: all Pydantic v2, all frozen (immutable)."""

from contractforge.models.audit import AuditAction, AuditCategory, AuditEvent, AuditSeverity
from contractforge.models.bulk import BulkItemResult, BulkProgress, BulkResult
from contractforge.models.contracts import (
    DOWNLOADABLE_STATUSES,
    STORAGE_FORMAT_VERSION,
    ArtifactMetadata,
    ContractStatus,
    GeneratedContract,
    PackagedDocument,
    StoredArtifact,
)
from contractforge.models.mappings import DirectField, DynamicBlock, FieldMapping, MappingEntry, TemplateMapping
from contractforge.models.stages import (
    VALID_TRANSITIONS,
    GenerationStage,
    InvalidStageTransitionError,
    StageTransition,
)
from contractforge.models.templates import Provider, Template

__all__ = [
    "ArtifactMetadata",
    "AuditAction",
    "AuditCategory",
    "AuditEvent",
    "AuditSeverity",
    "BulkItemResult",
    "BulkProgress",
    "BulkResult",
    "ContractStatus",
    "DOWNLOADABLE_STATUSES",
    "DirectField",
    "DynamicBlock",
    "FieldMapping",
    "GeneratedContract",
    "GenerationStage",
    "InvalidStageTransitionError",
    "MappingEntry",
    "PackagedDocument",
    "Provider",
    "STORAGE_FORMAT_VERSION",
    "StageTransition",
    "StoredArtifact",
    "Template",
    "TemplateMapping",
    "VALID_TRANSITIONS",
]
