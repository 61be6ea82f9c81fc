import logging
from pathlib import Path
from typing import Dict, List, Any, Optional, Union
import argparse

from rich.console import Console

from vcu_utils import (
    setup_logging,
    create_http_client,
    make_request,
    extract_items,
    filter_records,
    print_table,
    write_workbook,
    write_json
)
from vcu_connection import (
    Connection,
    base_url,
    get_connection,
    add_connection_arguments,
    connect_from_config,
    ConfigurationManager
)


DEPLOYMENT_USAGE_PATH = '/vcu/api/orgs/{org_id}/deployments/usage'

# Product identifiers reported in each deployment's usage list
VSPHERE_PRODUCT_ID = 'vsphere'
VSAN_PRODUCT_ID = 'vsan'

# Decimal places kept in usage sums
USAGE_PRECISION = 2

COLUMNS = [
    ('id', 'ID'),
    ('name', 'Name'),
    ('vsphere_usage', 'vSphere Usage'),
    ('vsan_usage', 'vSAN Usage'),
]


def _to_number(value: Any) -> Union[int, float]:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value
    try:
        number = float(str(value).strip())
    except (TypeError, ValueError):
        return 0
    return int(number) if number.is_integer() else number


def fetch_deployments(
    connection: Connection,
    logger: logging.Logger
) -> List[Dict[str, Any]]:
    """Retrieve the deployment usage collection for the connected org."""
    url = base_url(connection.vmc_server) + DEPLOYMENT_USAGE_PATH.format(org_id=connection.org_id)

    with create_http_client(connection.headers) as client:
        payload = make_request(
            client=client,
            method='GET',
            url=url,
            logger=logger,
            parse_json=True
        )

    if payload is None:
        logger.error(f"Failed to fetch deployments for org {connection.org_id}")
        return []

    items = extract_items(payload)
    logger.info(f"Collected {len(items)} deployments for org {connection.org_id}")
    return items


def build_deployment_record(deployment: Dict[str, Any]) -> Dict[str, Any]:
    """
    Reduce a deployment to its id, name and vSphere/vSAN usage totals.

    Usage entries for other products are ignored; a product with no entry
    reports 0.
    """
    totals = {VSPHERE_PRODUCT_ID: 0, VSAN_PRODUCT_ID: 0}
    for entry in deployment.get('usage') or []:
        product_id = str(entry.get('product_id', '')).lower()
        if product_id in totals:
            totals[product_id] += _to_number(entry.get('quantity', 0))

    return {
        'id': deployment.get('id', ''),
        'name': deployment.get('name', ''),
        'vsphere_usage': round(totals[VSPHERE_PRODUCT_ID], USAGE_PRECISION),
        'vsan_usage': round(totals[VSAN_PRODUCT_ID], USAGE_PRECISION),
    }


def summarize_usage(records: List[Dict[str, Any]]) -> Dict[str, Union[int, float]]:
    return {
        'vsphere_usage': round(sum(record['vsphere_usage'] for record in records), USAGE_PRECISION),
        'vsan_usage': round(sum(record['vsan_usage'] for record in records), USAGE_PRECISION),
    }


def get_deployments(
    name: Optional[str] = None,
    id: Optional[str] = None,
    logger: Optional[logging.Logger] = None
) -> List[Dict[str, Any]]:
    """
    Report vSphere and vSAN consumption per deployment.

    Args:
        name: Only report the deployment with this name
        id: Only report the deployment with this id
        logger: Logger instance

    Returns:
        One record per matching deployment

    Raises:
        RuntimeError: If connect() has not been called
    """
    logger = logger or logging.getLogger(__name__)
    connection = get_connection()

    deployments = filter_records(fetch_deployments(connection, logger), name=name, id=id)
    if name or id:
        logger.debug(f"{len(deployments)} deployment(s) match name={name} id={id}")

    return [build_deployment_record(deployment) for deployment in deployments]


def parse_arguments(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description='VMware Cloud Universal deployment usage report')
    parser.add_argument(
        '--name',
        type=str,
        help='Only report the deployment with this name'
    )
    parser.add_argument(
        '--id',
        type=str,
        dest='deployment_id',
        help='Only report the deployment with this id'
    )
    parser.add_argument(
        '--output',
        type=str,
        help='Save the report as an Excel workbook (e.g., output/deployments.xlsx)'
    )
    parser.add_argument(
        '--json-output',
        type=str,
        dest='json_output',
        help='Save the report as a JSON file'
    )
    add_connection_arguments(parser)
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_arguments(argv)
    logger = setup_logging(Path(__file__).stem, args.debug, ConfigurationManager.resolve_org_id(args.org_id))

    try:
        connect_from_config(args, logger)

        records = get_deployments(name=args.name, id=args.deployment_id, logger=logger)
        if not records:
            logger.warning("No deployments found")
            return

        console = Console()
        print_table('VCU Deployments', COLUMNS, records, console)
        totals = summarize_usage(records)
        console.print(f"Total vSphere usage: {totals['vsphere_usage']}")
        console.print(f"Total vSAN usage: {totals['vsan_usage']}")

        if args.output:
            write_workbook(records, COLUMNS, args.output, logger, title='Deployments')
        if args.json_output:
            write_json(records, args.json_output, logger)

    except Exception as e:
        logger.error(f"Error in main execution: {str(e)}")
        raise


if __name__ == "__main__":
    main()
