from launchpad.services.base import (
    MetadataPublisher,
    MintResult,
    PoolProvisioner,
    PoolResult,
    ProvisionReceipt,
    PublishResult,
    TokenMinter,
)
from launchpad.services.ipfs_service import IPFSService

__all__ = [
    "IPFSService",
    "MetadataPublisher",
    "MintResult",
    "PoolProvisioner",
    "PoolResult",
    "ProvisionReceipt",
    "PublishResult",
    "TokenMinter",
]
