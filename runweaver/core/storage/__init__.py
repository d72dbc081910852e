from runweaver.core.storage.base import ArtifactStore, DefinitionStore, RunStore
from runweaver.core.storage.memory import (
    InMemoryArtifactStore,
    InMemoryDefinitionStore,
    InMemoryRunStore,
)
from runweaver.core.storage.postgres import (
    PostgresArtifactStore,
    PostgresBackend,
    PostgresDefinitionStore,
    PostgresRunStore,
)

__all__ = [
    'ArtifactStore',
    'DefinitionStore',
    'RunStore',
    'InMemoryArtifactStore',
    'InMemoryDefinitionStore',
    'InMemoryRunStore',
    'PostgresArtifactStore',
    'PostgresBackend',
    'PostgresDefinitionStore',
    'PostgresRunStore',
]
