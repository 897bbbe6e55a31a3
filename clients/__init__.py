# Infrastructure clients
from clients.secrets_client import (
    InfraSettings,
    SecretsError,
    get_settings,
    get_database_url,
    get_valkey_url,
    get_email_config,
    reset_settings_cache,
)
from clients.postgres_client import PostgresClient
from clients.valkey_client import ValkeyClient
from clients.email_client import EmailGatewayClient, EmailGatewayError
