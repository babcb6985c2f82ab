"""Command-line entry point for the merge_gvcf package."""

from merge_gvcf.cli import main


if __name__ == "__main__":  # pragma: no cover - entry point
    main()
