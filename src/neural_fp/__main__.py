"""Allow running as python -m neural_fp."""

from .cli import main

main()
