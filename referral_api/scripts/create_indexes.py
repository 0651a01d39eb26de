#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Create the referral store indexes.

Installed as ``referral-create-indexes``; ``--dry-run`` prints the index plan
without connecting.
"""

import logging
from typing import Any, Dict

import click
from pymongo.errors import PyMongoError

from referral_api.services.mongodb import MongoDBService, INDEX_PLAN

logger = logging.getLogger(__name__)


def describe_index(keys: Any, options: Dict[str, Any]) -> str:
    """Human readable form of one ``INDEX_PLAN`` entry."""
    if isinstance(keys, str):
        keys = [(keys, 1)]
    description = ", ".join(
        f"{field} {'asc' if direction == 1 else 'desc'}" for field, direction in keys
    )
    if options.get("unique"):
        description += " (unique)"
    return description


@click.command()
@click.option("--uri", envvar="MONGODB_URI", default="mongodb://localhost:27017/referrals_dev",
              show_default=True, help="MongoDB connection string")
@click.option("--database", envvar="MONGODB_DATABASE", default="referrals_dev",
              show_default=True, help="Database holding the referral collections")
@click.option("--dry-run", is_flag=True, help="Print the index plan without connecting")
def main(uri: str, database: str, dry_run: bool):
    """Create indexes for referral list filters, audit queries and registry lookups."""
    if dry_run:
        for collection_name, indexes in INDEX_PLAN.items():
            for keys, options in indexes:
                click.echo(f"{collection_name}: {describe_index(keys, options)}")
        return

    mongodb_service = MongoDBService(uri, database)
    try:
        health = mongodb_service.health_check()
        if health['status'] != 'healthy':
            raise click.ClickException(f"MongoDB is not healthy: {health.get('error')}")

        logger.info(f"Connected to MongoDB {health.get('version')} - Database: {database}")
        created = mongodb_service.create_indexes()
    except PyMongoError as e:
        raise click.ClickException(f"Failed to create indexes: {e}") from e
    finally:
        mongodb_service.close_connection()

    for collection_name, names in created.items():
        click.echo(f"{collection_name}: {len(names)} indexes ({', '.join(names)})")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    main()
