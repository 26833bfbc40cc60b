"""
Connection string resolution for the CLI.

DSNs come from command-line flags, then the MAIN_DSN and STANDIN_DSN
environment variables, or from HashiCorp Vault with --use-vault.
"""

import argparse
import logging
import os

import requests

from sync_utils.vault_client import VaultClient

from ..config import DEFAULT_MAIN_DSN, DEFAULT_STANDIN_DSN
from ..errors import ConfigurationError

logger = logging.getLogger(__name__)

VAULT_MAIN_SECRET = "main"
VAULT_STANDIN_SECRET = "standin"


def get_dsns_from_vault_or_env(args: argparse.Namespace) -> tuple[str, str]:
    """
    Get main and standby connection strings

    Args:
        args: Parsed command-line arguments

    Returns:
        Tuple of (main_dsn, standin_dsn)

    Raises:
        ConfigurationError: If Vault is requested but cannot be read
    """
    if args.use_vault:
        try:
            vault_client = VaultClient()
            if not vault_client.health_check():
                raise ConfigurationError(f"Vault at {vault_client.vault_addr} is unreachable or sealed")
            main_dsn = vault_client.get_database_dsn(VAULT_MAIN_SECRET)
            standin_dsn = vault_client.get_database_dsn(VAULT_STANDIN_SECRET)
        except (ValueError, requests.RequestException) as e:
            raise ConfigurationError(f"Failed to fetch connection strings from Vault: {e}") from e

        logger.info("Successfully fetched connection strings from Vault")
        return main_dsn, standin_dsn

    main_dsn = args.main_dsn or os.getenv("MAIN_DSN", DEFAULT_MAIN_DSN)
    standin_dsn = args.standin_dsn or os.getenv("STANDIN_DSN", DEFAULT_STANDIN_DSN)

    if main_dsn == DEFAULT_MAIN_DSN or standin_dsn == DEFAULT_STANDIN_DSN:
        logger.warning("Using a built-in default DSN; set --main-dsn/--standin-dsn for real use")

    return main_dsn, standin_dsn
