"""
Version pins for the deployed hyperchain.

Denotes the server docker image, repository and commit that a freshly
provisioned hyperchain is expected to run.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Dict

APP_NAME = "zk_stack_wizard"


@dataclass(frozen=True)
class HyperchainVersion:
    """Server artifacts a hyperchain instance is provisioned against."""

    server_docker_image: str = "matterlabs/server-v2"
    server_docker_tag: str = "bd63b3a-1707838915921"
    server_git_repo: str = "https://github.com/matter-labs/zksync-era.git"
    server_git_revision: str = "bd63b3a"

    @property
    def server_image_ref(self) -> str:
        return f"{self.server_docker_image}:{self.server_docker_tag}"

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)


DEFAULT_VERSION = HyperchainVersion()
