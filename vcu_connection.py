import logging
import os
from pathlib import Path
from dotenv import load_dotenv
from typing import Dict, Optional
import argparse

from vcu_utils import (
    setup_logging,
    create_http_client,
    make_request
)


# Environment variables are loaded from ~/.vcu-usage-report
ENV_PATH = Path.home() / '.vcu-usage-report'

DEFAULT_CSP_SERVER = 'console.cloud.vmware.com'
DEFAULT_VMC_SERVER = 'vmc.vmware.com'
TOKEN_EXCHANGE_PATH = '/csp/gateway/am/api/auth/api-tokens/authorize'


class ConfigurationManager:
    REQUIRED_VARS = {
        'VCU_REFRESH_TOKEN': 'VMware Cloud Services API (refresh) token',
        'VCU_ORG_ID': 'VMware Cloud Services organization ID',
    }

    OPTIONAL_VARS = {
        'CSP_SERVER': DEFAULT_CSP_SERVER,
        'VMC_SERVER': DEFAULT_VMC_SERVER,
    }

    @classmethod
    def load_config(cls, overrides: Optional[Dict[str, Optional[str]]] = None) -> Dict[str, str]:
        """
        Load and validate environment variables.

        Args:
            overrides: Values taken from the command line; non-empty entries win
                over the environment

        Returns:
            Dictionary of configuration values
        """
        load_dotenv(ENV_PATH)

        config = {key: os.getenv(key) for key in cls.REQUIRED_VARS}
        for key, default in cls.OPTIONAL_VARS.items():
            config[key] = os.getenv(key) or default

        for key, value in (overrides or {}).items():
            if value:
                config[key] = value

        missing_vars = [f"{key} ({desc})" for key, desc in cls.REQUIRED_VARS.items()
                        if not config.get(key)]
        if missing_vars:
            raise EnvironmentError(
                f"Missing required environment variables:\n"
                f"{chr(10).join(missing_vars)}\n"
                f"Please ensure these are set in {ENV_PATH}"
            )
        return config

    @classmethod
    def resolve_org_id(cls, cli_org_id: Optional[str] = None) -> Optional[str]:
        """Org ID from the command line, the environment or the dotenv file, without validation."""
        load_dotenv(ENV_PATH)
        return cli_org_id or os.getenv('VCU_ORG_ID')


class Connection:
    """Authenticated session against the VMware Cloud services."""

    def __init__(
        self,
        csp_server: str,
        vmc_server: str,
        org_id: str,
        headers: Dict[str, str],
        expires_in: Optional[int] = None
    ):
        self.csp_server = csp_server
        self.vmc_server = vmc_server
        self.org_id = org_id
        self.headers = headers
        self.expires_in = expires_in

    def __repr__(self) -> str:
        return f"Connection(vmc_server={self.vmc_server!r}, org_id={self.org_id!r})"


_connection: Optional[Connection] = None


def base_url(server: str) -> str:
    """Return an https URL for a bare host name; URLs with a scheme are kept."""
    server = server.strip().rstrip('/')
    if '://' in server:
        return server
    return f"https://{server}"


def build_headers(access_token: str) -> Dict[str, str]:
    return {
        'csp-auth-token': access_token,
        'Content-Type': 'application/json',
        'Accept': 'application/json',
    }


def connect(
    refresh_token: str,
    org_id: str,
    csp_server: str = DEFAULT_CSP_SERVER,
    vmc_server: str = DEFAULT_VMC_SERVER,
    logger: Optional[logging.Logger] = None
) -> Connection:
    """
    Exchange a refresh token for an access token and store the connection.

    Args:
        refresh_token: VMware Cloud Services API token
        org_id: Organization the reports are run against
        csp_server: Cloud Services authorization host
        vmc_server: VMC API host
        logger: Logger instance

    Returns:
        The new process-wide Connection

    Raises:
        ValueError: If refresh_token or org_id is empty
        RuntimeError: If the token exchange fails
    """
    global _connection

    logger = logger or logging.getLogger(__name__)

    if not refresh_token or not refresh_token.strip():
        raise ValueError("A refresh token is required to connect")
    if not org_id or not org_id.strip():
        raise ValueError("An organization ID is required to connect")

    url = f"{base_url(csp_server)}{TOKEN_EXCHANGE_PATH}"
    logger.info(f"Requesting access token from {base_url(csp_server)}")

    with create_http_client({
        'Content-Type': 'application/x-www-form-urlencoded',
        'Accept': 'application/json',
    }) as client:
        token_response = make_request(
            client=client,
            method='POST',
            url=url,
            logger=logger,
            parse_json=True,
            data={'refresh_token': refresh_token.strip()}
        )

    if not isinstance(token_response, dict) or not token_response.get('access_token'):
        raise RuntimeError(
            f"Failed to retrieve an access token from {base_url(csp_server)}. "
            f"Verify that the refresh token is valid and has not expired."
        )

    _connection = Connection(
        csp_server=csp_server,
        vmc_server=vmc_server,
        org_id=org_id.strip(),
        headers=build_headers(token_response['access_token']),
        expires_in=token_response.get('expires_in'),
    )
    logger.info(f"Connected to {base_url(vmc_server)} for org {_connection.org_id}")
    return _connection


def get_connection() -> Connection:
    """Return the stored connection or fail if connect() has not succeeded."""
    if _connection is None:
        raise RuntimeError("Not connected to VMware Cloud. Run connect() with a valid refresh token first.")
    return _connection


def add_connection_arguments(parser: argparse.ArgumentParser) -> None:
    """Arguments shared by every script that connects."""
    parser.add_argument(
        '--org-id',
        type=str,
        dest='org_id',
        help='Organization ID (overrides VCU_ORG_ID)'
    )
    parser.add_argument(
        '--csp-server',
        type=str,
        dest='csp_server',
        help=f'Cloud Services authorization server (default: {DEFAULT_CSP_SERVER})'
    )
    parser.add_argument(
        '--vmc-server',
        type=str,
        dest='vmc_server',
        help=f'VMC API server (default: {DEFAULT_VMC_SERVER})'
    )
    parser.add_argument(
        '--debug',
        action='store_true',
        help='Enable debug level logging (more verbose output)'
    )


def connect_from_config(args: argparse.Namespace, logger: logging.Logger) -> Connection:
    """Load the configuration, apply command line overrides and connect."""
    config = ConfigurationManager.load_config({
        'VCU_ORG_ID': args.org_id,
        'CSP_SERVER': args.csp_server,
        'VMC_SERVER': args.vmc_server,
    })
    return connect(
        config['VCU_REFRESH_TOKEN'],
        config['VCU_ORG_ID'],
        csp_server=config['CSP_SERVER'],
        vmc_server=config['VMC_SERVER'],
        logger=logger
    )


def parse_arguments(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description='Verify VMware Cloud Services credentials')
    add_connection_arguments(parser)
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_arguments(argv)
    logger = setup_logging(Path(__file__).stem, args.debug, ConfigurationManager.resolve_org_id(args.org_id))

    try:
        connection = connect_from_config(args, logger)
        if connection.expires_in:
            logger.info(f"Access token is valid for {connection.expires_in} seconds")
        logger.info(f"Credentials verified for org {connection.org_id} ✓")
    except Exception as e:
        logger.error(f"Error in main execution: {str(e)}")
        raise


if __name__ == "__main__":
    main()
