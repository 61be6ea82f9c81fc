import logging
import re
from pathlib import Path
from typing import Dict, List, Any, Optional, Tuple
import argparse

from rich.console import Console

from vcu_utils import (
    setup_logging,
    create_http_client,
    make_request,
    extract_items,
    filter_records,
    format_timestamp,
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


SUBSCRIPTIONS_PATH = '/vmc/api/orgs/{org_id}/subscriptions'

COLUMNS = [
    ('id', 'ID'),
    ('status', 'Status'),
    ('quantity', 'Quantity'),
    ('units', 'Units'),
    ('type', 'Type'),
    ('flexible', 'Flexible'),
    ('seller', 'Seller'),
    ('billing_option', 'Billing Option'),
    ('term', 'Term'),
    ('location', 'Location'),
    ('start_date', 'Start Date'),
    ('end_date', 'End Date'),
]


def fetch_subscriptions(
    connection: Connection,
    logger: logging.Logger
) -> List[Dict[str, Any]]:
    """Retrieve all subscriptions of the connected org."""
    url = base_url(connection.vmc_server) + SUBSCRIPTIONS_PATH.format(org_id=connection.org_id)

    with create_http_client(connection.headers) as client:
        payload = make_request(
            client=client,
            method='GET',
            url=url,
            logger=logger,
            parse_json=True
        )

    if payload is None:
        logger.error(f"Failed to fetch subscriptions for org {connection.org_id}")
        return []

    items = extract_items(payload)
    logger.info(f"Collected {len(items)} subscriptions for org {connection.org_id}")
    return items


# Plain decimal counts only; "nan", "inf" or "1_000" stay text
INTEGER_RE = re.compile(r'\d+')
DECIMAL_RE = re.compile(r'\d+\.\d*|\.\d+')


def _parse_quantity(token: str) -> Any:
    if INTEGER_RE.fullmatch(token):
        return int(token)
    if DECIMAL_RE.fullmatch(token):
        return float(token)
    return token


def split_amount(value: Any) -> Tuple[Any, str]:
    """
    Split a bundled line item amount such as "5 hosts" into (5, "hosts").

    The first whitespace-separated token is the quantity, everything after it
    the units. Non-string values are returned as the quantity with no units.
    """
    if value is None:
        return '', ''
    if not isinstance(value, str):
        return value, ''

    parts = value.split(None, 1)
    if not parts:
        return '', ''
    units = parts[1].strip() if len(parts) > 1 else ''
    return _parse_quantity(parts[0]), units


def _format_term(subscription: Dict[str, Any]) -> str:
    term = subscription.get('commitment_term')
    if term in (None, ''):
        return ''
    uom = subscription.get('commitment_term_uom') or ''
    return f"{term} {uom}".strip()


def build_subscription_record(
    subscription: Dict[str, Any],
    product: Optional[str] = None,
    amount: Any = None
) -> Dict[str, Any]:
    """
    Map a subscription onto a flat report row.

    When product is given the row describes one product of a bundled
    subscription: type becomes the product name and quantity/units are
    taken from amount.
    """
    if product is None:
        quantity = subscription.get('quantity', '')
        units = subscription.get('units', '')
        sub_type = subscription.get('offer_type', '')
    else:
        quantity, units = split_amount(amount)
        sub_type = product

    return {
        'id': subscription.get('id', ''),
        'status': subscription.get('status', ''),
        'quantity': quantity,
        'units': units,
        'type': sub_type,
        'flexible': subscription.get('is_flexible', ''),
        'seller': subscription.get('seller', ''),
        'billing_option': subscription.get('billing_frequency', ''),
        'term': _format_term(subscription),
        'location': subscription.get('region', ''),
        'start_date': format_timestamp(subscription.get('start_date')),
        'end_date': format_timestamp(subscription.get('end_date')),
    }


def flatten_subscription(
    subscription: Dict[str, Any],
    expand: bool = False
) -> List[Dict[str, Any]]:
    """Return one row, or one row per bundled product when expand is set."""
    context = subscription.get('context')
    if expand and isinstance(context, dict) and context:
        return [
            build_subscription_record(subscription, product=product, amount=amount)
            for product, amount in context.items()
        ]
    return [build_subscription_record(subscription)]


def get_subscriptions(
    name: Optional[str] = None,
    id: Optional[str] = None,
    expand: bool = False,
    logger: Optional[logging.Logger] = None
) -> List[Dict[str, Any]]:
    """
    Report the org's subscriptions as flat rows.

    Args:
        name: Only report subscriptions with this offer name
        id: Only report the subscription with this id
        expand: Emit one row per product of bundled subscriptions
        logger: Logger instance

    Raises:
        RuntimeError: If connect() has not been called
    """
    logger = logger or logging.getLogger(__name__)
    connection = get_connection()

    subscriptions = filter_records(
        fetch_subscriptions(connection, logger),
        name=name,
        id=id,
        name_key='offer_name'
    )

    records = []
    for subscription in subscriptions:
        rows = flatten_subscription(subscription, expand)
        if len(rows) > 1:
            logger.debug(f"Expanded subscription {subscription.get('id')} into {len(rows)} rows")
        records.extend(rows)
    return records


def parse_arguments(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description='VMware Cloud Universal subscription report')
    parser.add_argument(
        '--name',
        type=str,
        help='Only report subscriptions with this offer name'
    )
    parser.add_argument(
        '--id',
        type=str,
        dest='subscription_id',
        help='Only report the subscription with this id'
    )
    parser.add_argument(
        '--expand',
        action='store_true',
        help='Show one row per product for bundled subscriptions'
    )
    parser.add_argument(
        '--output',
        type=str,
        help='Save the report as an Excel workbook (e.g., output/subscriptions.xlsx)'
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

        records = get_subscriptions(
            name=args.name,
            id=args.subscription_id,
            expand=args.expand,
            logger=logger
        )
        if not records:
            logger.warning("No subscriptions found")
            return

        print_table('VCU Subscriptions', COLUMNS, records, Console())

        if args.output:
            write_workbook(records, COLUMNS, args.output, logger, title='Subscriptions')
        if args.json_output:
            write_json(records, args.json_output, logger)

    except Exception as e:
        logger.error(f"Error in main execution: {str(e)}")
        raise


if __name__ == "__main__":
    main()
