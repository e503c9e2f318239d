"""Release artifact naming rules and upstream URL layout."""

from __future__ import annotations

import re
from dataclasses import dataclass

from .errors import InvalidFilename


# The platform segment is open-ended; upstream answers 404 for unknown targets.
FILENAME_PATTERN = re.compile(
    r"^zig(?:|-bootstrap|-[a-zA-Z0-9_]+-[a-zA-Z0-9_]+)"
    r"-(?P<version>[0-9]+\.[0-9]+\.[0-9]+(?:-dev\.[0-9]+\+[0-9a-f]+)?)"
    r"\.(?:tar\.xz|zip)(?:\.minisig)?$"
)
DEV_MARKER = "-dev"


@dataclass(frozen=True, slots=True)
class ArtifactIdentity:
    filename: str
    version: str

    @property
    def is_development_build(self) -> bool:
        return DEV_MARKER in self.version

    def upstream_path(self) -> str:
        """Nightly builds live in a flat directory; releases are grouped by version."""
        if self.is_development_build:
            return f"builds/{self.filename}"
        return f"download/{self.version}/{self.filename}"


def parse_filename(filename: str) -> ArtifactIdentity:
    """Validate ``filename`` against the release naming grammar.

    Pure string work: never touches the filesystem or the network.
    """
    match = FILENAME_PATTERN.fullmatch(filename)
    if match is None:
        raise InvalidFilename("Invalid filename format", filename=filename)
    return ArtifactIdentity(filename=filename, version=match.group("version"))


def upstream_url(upstream_base: str, identity: ArtifactIdentity) -> str:
    return f"{upstream_base.rstrip('/')}/{identity.upstream_path()}"
