"""
Cross-Project Meta Learning
===========================

Buckets finalized runs by project class and derives a prior per bucket.
"""

from .aggregator import (
    aggregate_bucket_stats,
    build_meta_policy,
    derive_meta_policy_bias,
    load_meta_policy,
    scan_pool,
    write_meta_policy,
)
from .models import BucketPolicy, BucketStats, MetaPolicy, MetaPolicyBias
from .profile import bucket_key, infer_genre, resolve_profile

__all__ = [
    "BucketPolicy",
    "BucketStats",
    "MetaPolicy",
    "MetaPolicyBias",
    "aggregate_bucket_stats",
    "bucket_key",
    "build_meta_policy",
    "derive_meta_policy_bias",
    "infer_genre",
    "load_meta_policy",
    "resolve_profile",
    "scan_pool",
    "write_meta_policy",
]
