"""Cluster API layer.

Submodules:
    base        -- ResourceDriver ABC and the ClusterAPI driver registry.
    helm        -- Async wrapper around the helm binary.
    kubernetes  -- Namespace, Secret and HelmRelease drivers plus connect_cluster().
"""

from stackdeploy.cluster.base import ClusterAPI, ResourceDriver

__all__ = ["ClusterAPI", "ResourceDriver"]
