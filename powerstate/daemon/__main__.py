"""`python -m powerstate.daemon` entrypoint.

For installed usage, prefer the `powerstate-daemon` console script.
"""

from __future__ import annotations

from .entrypoint import main


if __name__ == "__main__":
    main()
