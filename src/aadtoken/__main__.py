"""Entry point for running aadtoken as a module.

Usage:
    python -m aadtoken get-token https://management.azure.com/ --app <id>
    python -m aadtoken --help
"""

from dotenv import load_dotenv

load_dotenv()  # Load .env (AADTOKEN_PASSWORD, AADTOKEN_CONFIG_PATH, ...) before the CLI reads them

from aadtoken.cli import main  # noqa: E402

if __name__ == "__main__":
    main()
