"""
=============================================================================
BUILD IDENTITY
=============================================================================

The version tag, build date and build mode printed on the first lines of
the diagnostics report:

    Running version:  v3.0.1 (build 20261019120000 PROD)
                      ──┬───        ──────┬─────── ─┬──
                        │                 │         │
                     version            date       mode

Release pipelines stamp these through the environment:

    HELLOWORLD_GIT_TAG   version tag       (default: installed package version)
    HELLOWORLD_DATE_TAG  build timestamp   (default: "unknown")
    HELLOWORLD_MODE      build mode        (default: "DEV")

=============================================================================
"""

import os
from dataclasses import dataclass
from importlib import metadata
from typing import Mapping, Optional

from . import __version__


DISTRIBUTION_NAME = "helloworld-server"


@dataclass(frozen=True)
class BuildInfo:
    """Immutable build identity."""

    version: str
    date: str = "unknown"
    mode: str = "DEV"

    def describe(self) -> str:
        """"<version> (build <date> <mode>)" as shown in the report."""
        return f"{self.version} (build {self.date} {self.mode})"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "BuildInfo":
        """
        Read build identity from the environment.

        Unset or empty variables fall back to the defaults listed in the
        module docstring.
        """
        env = os.environ if environ is None else environ
        return cls(
            version=env.get("HELLOWORLD_GIT_TAG") or installed_version(),
            date=env.get("HELLOWORLD_DATE_TAG") or "unknown",
            mode=env.get("HELLOWORLD_MODE") or "DEV",
        )


def installed_version() -> str:
    """
    Version of the installed distribution.

    Running from a source checkout (nothing installed) gives the package's
    own __version__.
    """
    try:
        return metadata.version(DISTRIBUTION_NAME)
    except metadata.PackageNotFoundError:
        return __version__
