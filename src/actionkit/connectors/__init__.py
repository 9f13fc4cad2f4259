"""Connectors package.

Importing this package registers every built-in connector with the registry.
"""

from .base import Connector, require_module
from .registry import (
    VIRTUAL_TYPES,
    available_connectors,
    build_connector,
    connector_class,
    is_virtual_type,
    register_connector,
)
from .sql import (
    ClickHouseConnector,
    MSSQLConnector,
    MySQLConnector,
    OracleConnector,
    PostgresConnector,
    SnowflakeConnector,
)
from .airtable import AirtableConnector
from .appwrite import AppwriteConnector
from .couchdb import CouchDBConnector
from .dynamodb import DynamoDBConnector
from .elasticsearch import ElasticsearchConnector
from .firebase import FirebaseConnector
from .googlesheets import GoogleSheetsConnector
from .graphql import GraphQLConnector
from .huggingface import HFEndpointConnector, HuggingFaceConnector
from .mongodb import MongoDBConnector
from .redis import RedisConnector
from .restapi import RestAPIConnector
from .s3 import S3Connector
from .smtp import SMTPConnector

__all__ = [
    "Connector",
    "require_module",
    "VIRTUAL_TYPES",
    "register_connector",
    "build_connector",
    "connector_class",
    "is_virtual_type",
    "available_connectors",
    "MySQLConnector",
    "PostgresConnector",
    "MSSQLConnector",
    "OracleConnector",
    "ClickHouseConnector",
    "SnowflakeConnector",
    "RedisConnector",
    "MongoDBConnector",
    "ElasticsearchConnector",
    "S3Connector",
    "SMTPConnector",
    "FirebaseConnector",
    "RestAPIConnector",
    "GraphQLConnector",
    "HuggingFaceConnector",
    "HFEndpointConnector",
    "DynamoDBConnector",
    "CouchDBConnector",
    "AppwriteConnector",
    "AirtableConnector",
    "GoogleSheetsConnector",
]
