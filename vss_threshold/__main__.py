from __future__ import annotations

import sys
from pathlib import Path


def _ensure_repo_root_on_path() -> None:
    """Put the repository root (parent of this package) on ``sys.path``.

    Lets ``python vss_threshold/__main__.py`` resolve the package imports the
    same way ``python -m vss_threshold`` does.
    """
    pkg_dir = Path(__file__).resolve().parent
    repo_root_str = str(pkg_dir.parent)
    if repo_root_str not in sys.path:
        sys.path.insert(0, repo_root_str)


try:
    # python -m vss_threshold / console script
    from .app import run  # type: ignore[attr-defined]
except ImportError:
    # Executed as a plain script
    _ensure_repo_root_on_path()
    from vss_threshold.app import run  # type: ignore[attr-defined]


def main() -> int:
    """Run the contrast threshold test window."""
    return run()


if __name__ == "__main__":
    raise SystemExit(main())
