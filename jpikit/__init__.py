"""jpikit: dependency-scope resolution and packaging for host extension archives.

The package turns a single extension project's dependency declarations into
classpaths and a distributable ``.hpi``/``.jpi`` archive.
"""

from __future__ import annotations

from jpikit.__version__ import __version__

__all__ = ["__version__"]
