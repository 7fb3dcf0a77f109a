"""Image and git transports.

Thin wrappers around ``crane`` and ``git`` plus the reference rewriting that
maps public names onto the air-gapped registry and git server.
"""

from .git import GitCLITransport, GitTarget, GitTransport, repo_folder_name, repo_name, rewrite_url
from .images import (
    CraneImageTransport,
    ImageRef,
    ImageTransport,
    RegistryTarget,
    image_tarball_name,
    swap_host,
    unique_images,
)

__all__ = [
    # Images
    "ImageRef",
    "ImageTransport",
    "CraneImageTransport",
    "RegistryTarget",
    "swap_host",
    "image_tarball_name",
    "unique_images",
    # Git
    "GitTransport",
    "GitCLITransport",
    "GitTarget",
    "repo_folder_name",
    "repo_name",
    "rewrite_url",
]
