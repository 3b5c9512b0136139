#!/usr/bin/env python3
"""
Filename, key and default constants for n8n-deploy.

All modules import names from here instead of hardcoding strings.
"""

# ============================================================================
# Files
# ============================================================================

ENV_FILE = '.env'
ENV_EXAMPLE_FILE = '.env.example'

DOCKER_COMPOSE_TEMPLATE = 'docker-compose.yml.j2'
DOCKER_COMPOSE_OUTPUT = 'docker-compose.yml'

# Proxy image build context (relative to the working directory)
PROXY_BUILD_DIR = 'nginx'
PROXY_SCRIPT_NAME = 'proxy_template.py'

# Certificate tree (bind-mounted into the proxy and certbot containers)
CERT_ROOT_DIR = 'letsencrypt'
CERT_WEBROOT_DIR = 'www'
CERT_CHAIN_FILE = 'fullchain.pem'
CERT_KEY_FILE = 'privkey.pem'

# ============================================================================
# Configuration keys
# ============================================================================

KEY_DOMAIN = 'DOMAIN_NAME'
KEY_SUBDOMAIN = 'SUBDOMAIN'
KEY_EMAIL = 'EMAIL'
KEY_DB_PASSWORD = 'DB_POSTGRESDB_PASSWORD'
KEY_DB_USER = 'DB_POSTGRESDB_USER'
KEY_DB_NAME = 'DB_POSTGRESDB_DATABASE'
KEY_TIMEZONE = 'GENERIC_TIMEZONE'
KEY_EXTERNAL_IP = 'EXTERNAL_IP'
KEY_LOG_LEVEL = 'LOG_LEVEL'

REQUIRED_KEYS = (KEY_DOMAIN, KEY_SUBDOMAIN, KEY_EMAIL, KEY_DB_PASSWORD)

DEFAULTS = {
    KEY_DB_USER: 'n8n',
    KEY_DB_NAME: 'n8n',
    KEY_TIMEZONE: 'UTC',
    KEY_EXTERNAL_IP: '',
    KEY_LOG_LEVEL: 'INFO',
}

# ============================================================================
# Services
# ============================================================================

SERVICE_PROXY = 'nginx'
SERVICE_APP = 'n8n'
SERVICE_DB = 'postgres'

# Start order; compose enforces it through depends_on
SERVICE_ORDER = (SERVICE_DB, SERVICE_APP, SERVICE_PROXY)

DB_PORT = 5432
CHALLENGE_PORT = 80

# ============================================================================
# External endpoints and images
# ============================================================================

DEFAULT_IP_DETECT_URLS = [
    'https://ifconfig.me',
    'https://ifconfig.co',
]
IP_DETECT_URLS_ENV = 'N8N_DEPLOY_IP_DETECT_URLS'
IP_DETECT_TIMEOUT = 10

CERTBOT_IMAGE = 'certbot/certbot'
CERTBOT_CONTAINER_NAME = 'certbot_initial'
CERTBOT_CONTAINER_ROOT = '/etc/letsencrypt'

DOCKER_APT_KEY_URL = 'https://download.docker.com/linux/{distro}/gpg'
DOCKER_APT_REPO_URL = 'https://download.docker.com/linux/{distro}'
DOCKER_KEYRING_DIR = '/etc/apt/keyrings'
DOCKER_KEYRING = '/etc/apt/keyrings/docker.gpg'
DOCKER_APT_SOURCE = '/etc/apt/sources.list.d/docker.list'

DOCKER_PACKAGES = [
    'docker-ce',
    'docker-ce-cli',
    'containerd.io',
    'docker-buildx-plugin',
    'docker-compose-plugin',
]
DOCKER_PREREQ_PACKAGES = ['ca-certificates', 'curl', 'gnupg', 'lsb-release']
DOCKER_GROUP = 'docker'

SKIP_DEPENDENCY_CHECK_ENV = 'SKIP_DEPENDENCY_CHECK'
