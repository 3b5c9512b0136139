"""Allow `python -m n8n_deploy`."""

from .cli import main

if __name__ == "__main__":
    main()
