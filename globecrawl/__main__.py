"""Module executed when running ``python -m globecrawl``."""

from globecrawl.main import main

if __name__ == "__main__":  # pragma: no cover - runtime entrypoint
    main()
