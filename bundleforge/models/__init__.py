"""bundleforge data models: Pydantic v2, frozen where they are records."""

from bundleforge.models.access import (
    AccessType,
    LocalBlobAccess,
    OCIArtifactAccess,
    OCIBlobAccess,
)
from bundleforge.models.components import (
    ComponentDescriptor,
    ComponentReference,
    ComponentResource,
    ComponentVersion,
    DescriptorReference,
)
from bundleforge.models.configdata import (
    ConfigData,
    Configuration,
    ConfigurationRule,
    LocalizationMapping,
    LocalizationResource,
    LocalizationRule,
)
from bundleforge.models.identity import IDENTITY_KEYS, Identity
from bundleforge.models.references import (
    MutationObject,
    MutationSpec,
    NamespacedName,
    ObjectReference,
    PatchSource,
    PatchSourceRef,
    PatchStrategicMerge,
    PatchTarget,
    ResourceRef,
    Source,
)
from bundleforge.models.snapshot import (
    MutationResult,
    MutationStatus,
    Snapshot,
    SourceArtifact,
)
from bundleforge.models.stages import (
    VALID_TRANSITIONS,
    MutationStage,
    StageTransition,
    TransformKind,
)
from bundleforge.models.substitutions import RuleSet, Substitution

__all__ = [
    # identity
    "IDENTITY_KEYS",
    "Identity",
    # references
    "MutationObject",
    "MutationSpec",
    "NamespacedName",
    "ObjectReference",
    "PatchSource",
    "PatchSourceRef",
    "PatchStrategicMerge",
    "PatchTarget",
    "ResourceRef",
    "Source",
    # config data
    "ConfigData",
    "Configuration",
    "ConfigurationRule",
    "LocalizationMapping",
    "LocalizationResource",
    "LocalizationRule",
    # substitutions
    "RuleSet",
    "Substitution",
    # components
    "AccessType",
    "ComponentDescriptor",
    "ComponentReference",
    "ComponentResource",
    "ComponentVersion",
    "DescriptorReference",
    "LocalBlobAccess",
    "OCIArtifactAccess",
    "OCIBlobAccess",
    # snapshots and status
    "MutationResult",
    "MutationStatus",
    "Snapshot",
    "SourceArtifact",
    # stages
    "MutationStage",
    "StageTransition",
    "TransformKind",
    "VALID_TRANSITIONS",
]
