"""
Collaborator interfaces consumed by the decision engine.

The feature provider supplies computed customer features; the model registry
supplies deployed model versions for result provenance. Both are owned by
other subsystems; static implementations here serve tests, demos and local runs.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, Optional, Tuple


class FeatureProvider(ABC):
    """Source of computed customer features."""

    @abstractmethod
    def get_features(
        self,
        customer_id: str,
        tenant_id: str,
        names: Optional[Iterable[str]] = None,
    ) -> Dict[str, Any]:
        """Return a flat feature map, restricted to `names` when given."""


class ModelRegistry(ABC):
    """Read-only view of deployed models."""

    @abstractmethod
    def get_deployed_model_versions(self) -> Dict[str, str]:
        """Return model name -> deployed version."""


class StaticFeatureProvider(FeatureProvider):
    """In-memory features keyed by (tenant_id, customer_id)."""

    def __init__(self, features: Optional[Dict[Tuple[str, str], Dict[str, Any]]] = None):
        self._features = dict(features or {})

    def set_features(self, customer_id: str, tenant_id: str, features: Dict[str, Any]) -> None:
        self._features[(tenant_id, customer_id)] = dict(features)

    def get_features(self, customer_id, tenant_id, names=None):
        found = self._features.get((tenant_id, customer_id), {})
        if names is None:
            return dict(found)
        wanted = set(names)
        return {k: v for k, v in found.items() if k in wanted}


DEFAULT_MODEL_VERSIONS = {"churn_prediction": "1.0.0"}


class StaticModelRegistry(ModelRegistry):
    """Fixed model-version table."""

    def __init__(self, versions: Optional[Dict[str, str]] = None):
        self._versions = dict(DEFAULT_MODEL_VERSIONS if versions is None else versions)

    def get_deployed_model_versions(self):
        return dict(self._versions)
